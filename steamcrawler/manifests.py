"""Turn decoded manifest trees into LibraryFolder and GameRecord objects."""
import enum
import logging
from pathlib import Path
from typing import Dict, List, Optional

from .errors import SkippedManifest
from .models import GameRecord, InstallState, KeyValueNode, LibraryFolder, ScanWarning
from .utils import add_warning

log = logging.getLogger(__name__)


class AppState(enum.IntFlag):
    """Steam's EAppState bits, as found in appmanifest "StateFlags"."""
    Invalid = 0
    Uninstalled = 1
    UpdateRequired = 2
    FullyInstalled = 4
    Encrypted = 8
    Locked = 16
    FilesMissing = 32
    AppRunning = 64
    FilesCorrupt = 128
    UpdateRunning = 256
    UpdatePaused = 512
    UpdateStarted = 1024
    Uninstalling = 2048
    BackupRunning = 4096
    Reconfiguring = 65536
    Validating = 131072
    AddingFiles = 262144
    Preallocating = 524288
    Downloading = 1048576
    Staging = 2097152
    Committing = 4194304
    UpdateStopping = 8388608


KNOWN_BITS = 0
for _flag in AppState:
    KNOWN_BITS |= _flag.value

UPDATE_BITS = (
    AppState.UpdateRequired | AppState.UpdateRunning | AppState.UpdatePaused
    | AppState.UpdateStarted | AppState.Reconfiguring | AppState.Validating
    | AppState.AddingFiles | AppState.Preallocating | AppState.Downloading
    | AppState.Staging | AppState.Committing | AppState.UpdateStopping
)
BROKEN_BITS = AppState.Uninstalled | AppState.FilesMissing | AppState.FilesCorrupt


def lower_dict(d: Dict[str, KeyValueNode]) -> Dict[str, KeyValueNode]:
    """Shallow copy with lower-cased keys; manifests mix 'appid' and 'appID'."""
    return {k.lower(): v for k, v in d.items()}


def _scalar(d: Dict[str, KeyValueNode], key: str) -> Optional[str]:
    value = d.get(key)
    return value.strip() if isinstance(value, str) else None


def _int(value: Optional[str], default: int = 0) -> int:
    try:
        return int(value) if value else default
    except ValueError:
        return default


def read_library_folders(tree: Dict[str, KeyValueNode],
                         warnings: Optional[List[ScanWarning]] = None) -> List[LibraryFolder]:
    """Library folders listed in a decoded libraryfolders.vdf.

    Newer clients store each folder as a mapping with a "path" field; older
    ones store the path directly as the value of the numeric key.
    """
    section = lower_dict(tree).get("libraryfolders")
    if not isinstance(section, dict):
        add_warning(warnings, "library", "libraryfolders.vdf", "no 'libraryfolders' section")
        return []

    folders: List[LibraryFolder] = []
    for key, value in section.items():
        if not key.isdigit():
            continue
        if isinstance(value, dict):
            entry = lower_dict(value)
            path = _scalar(entry, "path")
            label = _scalar(entry, "label") or ""
            mount_id = _scalar(entry, "contentid") or ""
        else:
            path, label, mount_id = value.strip(), "", ""
        if not path:
            add_warning(warnings, "library", "libraryfolders.vdf", f"library entry {key} has no path")
            continue
        folders.append(LibraryFolder(path=Path(path), label=label, mount_id=mount_id))

    log.debug(f"Library manifest lists {len(folders)} folder(s)")
    return folders


def install_state(raw: Optional[str], warnings: Optional[List[ScanWarning]] = None,
                  path="") -> InstallState:
    """Derive install flags from a StateFlags value.

    Unknown bits or an unreadable value count as installed, with a warning.
    """
    if raw is None:
        add_warning(warnings, "state", path, "StateFlags missing; assuming installed")
        return InstallState(flags=AppState.FullyInstalled.value, installed=True)
    try:
        flags = int(raw)
    except ValueError:
        add_warning(warnings, "state", path, f"StateFlags {raw!r} is not a number; assuming installed")
        return InstallState(flags=AppState.FullyInstalled.value, installed=True)

    unknown = flags & ~KNOWN_BITS
    if unknown or flags < 0:
        add_warning(warnings, "state", path, f"StateFlags {flags} has unrecognized bits {unknown:#x}; assuming installed")
        return InstallState(flags=flags, installed=True,
                            update_pending=bool(flags & UPDATE_BITS))

    state = AppState(flags)
    return InstallState(
        flags=flags,
        installed=bool(state & AppState.FullyInstalled),
        update_pending=bool(state & UPDATE_BITS),
        invalid=flags == 0 or bool(state & BROKEN_BITS),
    )


def read_game_record(tree: Dict[str, KeyValueNode], warnings: Optional[List[ScanWarning]] = None,
                     manifest_path: Optional[Path] = None,
                     library: Optional[Path] = None) -> GameRecord:
    """Build a GameRecord from a decoded appmanifest_<id>.acf.

    Raises SkippedManifest when the app id is missing or not numeric; any
    other gap is filled in and reported through ``warnings``.
    """
    where = str(manifest_path) if manifest_path else "appmanifest"
    app_state = lower_dict(tree).get("appstate")
    if not isinstance(app_state, dict):
        raise SkippedManifest("no AppState section", where)
    app_state = lower_dict(app_state)

    raw_id = _scalar(app_state, "appid")
    if not raw_id or not (raw_id.isascii() and raw_id.isdigit()):
        raise SkippedManifest(f"missing or invalid appid {raw_id!r}", where)
    app_id = int(raw_id)

    install_dir = _scalar(app_state, "installdir") or ""
    if not install_dir:
        add_warning(warnings, "malformed", where, f"app {app_id} has no installdir")

    name = _scalar(app_state, "name")
    if not name:
        user_config = app_state.get("userconfig")
        if isinstance(user_config, dict):
            name = _scalar(lower_dict(user_config), "name")
    if not name:
        name = install_dir or f"App {app_id}"
        add_warning(warnings, "malformed", where, f"app {app_id} has no name; using {name!r}")

    if library is None:
        library = manifest_path.parent.parent if manifest_path else Path(".")

    return GameRecord(
        app_id=app_id,
        name=name,
        install_dir=install_dir,
        library=library,
        state=install_state(_scalar(app_state, "stateflags"), warnings, where),
        size_on_disk=_int(_scalar(app_state, "sizeondisk")),
        last_updated=_int(_scalar(app_state, "lastupdated")),
        build_id=_scalar(app_state, "buildid") or "",
        manifest_path=manifest_path,
    )
