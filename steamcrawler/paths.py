"""Locate the Steam installation and its library folders.

Candidate locations live in ``CANDIDATES``, one ordered list of closures per
platform family. Each closure receives the environment mapping and returns a
path string or None; the first candidate that is an existing directory wins.
"""
import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from . import keyvalues
from .errors import NotFound
from .manifests import read_library_folders
from .models import LibraryFolder, ScanWarning
from .utils import add_warning, normalize_path, platform_key

log = logging.getLogger(__name__)

LIBRARY_MANIFESTS = (
    Path("steamapps") / "libraryfolders.vdf",
    Path("config") / "libraryfolders.vdf",
)

Candidate = Callable[[Mapping[str, str]], Optional[str]]

def _home(env: Mapping[str, str]) -> Path:
    home = env.get("HOME") or env.get("USERPROFILE")
    return Path(home) if home else Path.home()

def _in_home(*parts: str) -> Candidate:
    return lambda env: str(_home(env).joinpath(*parts))

def _env_dir(var: str, *parts: str) -> Candidate:
    def candidate(env):
        base = env.get(var)
        return str(Path(base).joinpath(*parts)) if base else None
    return candidate

def _registry(hive_name: str, subkey: str, value: str) -> Candidate:
    def candidate(env):
        try:
            import winreg
        except ImportError:
            return None
        try:
            with winreg.OpenKey(getattr(winreg, hive_name), subkey) as key:
                path, _ = winreg.QueryValueEx(key, value)
                return str(path)
        except OSError:
            return None
    return candidate

CANDIDATES: Dict[str, List[Candidate]] = {
    "windows": [
        _registry("HKEY_CURRENT_USER", r"Software\Valve\Steam", "SteamPath"),
        _registry("HKEY_LOCAL_MACHINE", r"SOFTWARE\WOW6432Node\Valve\Steam", "InstallPath"),
        _registry("HKEY_LOCAL_MACHINE", r"SOFTWARE\Valve\Steam", "InstallPath"),
        _env_dir("ProgramFiles(x86)", "Steam"),
        _env_dir("ProgramFiles", "Steam"),
        lambda env: r"C:\Program Files (x86)\Steam",
    ],
    "macos": [
        _in_home("Library", "Application Support", "Steam"),
    ],
    "linux": [
        _in_home(".local", "share", "Steam"),
        _in_home(".steam", "steam"),
        _in_home(".steam", "root"),
        _in_home(".var", "app", "com.valvesoftware.Steam", "data", "Steam"),
        _in_home(".var", "app", "com.valvesoftware.Steam", ".local", "share", "Steam"),
        _in_home("snap", "steam", "common", ".local", "share", "Steam"),
    ],
}

# Steam client binaries used for direct -applaunch invocations
BINARIES: Dict[str, List[Candidate]] = {
    "windows": [lambda env: "steam.exe"],
    "macos": [
        lambda env: "/Applications/Steam.app/Contents/MacOS/steam_osx",
        _in_home("Applications", "Steam.app", "Contents", "MacOS", "steam_osx"),
    ],
    "linux": [
        lambda env: "steam.sh",
        lambda env: shutil.which("steam"),
    ],
}

def resolve_steam_root(override: Optional[str] = None, platform: Optional[str] = None,
                       env: Optional[Mapping[str, str]] = None,
                       configured: Optional[str] = None) -> Path:
    """Return the Steam installation directory or raise NotFound.

    Overrides are tried first, in order: `override`, $STEAM_ROOT, then
    `configured` (the settings file value). An override that is not a
    directory is skipped, never returned.
    """
    env = os.environ if env is None else env
    plat = platform_key(platform)

    overrides = (("override", override), ("STEAM_ROOT", env.get("STEAM_ROOT")), ("settings", configured))
    for label, value in overrides:
        if not value:
            continue
        p = Path(os.path.expanduser(value))
        if p.is_dir():
            log.debug(f"Steam root from {label}: {p}")
            return p
        log.warning(f"Ignoring Steam root {label} {value!r}: not a directory")

    tried = []
    for candidate in CANDIDATES.get(plat, []):
        value = candidate(env)
        if not value:
            continue
        p = Path(value)
        tried.append(str(p))
        if p.is_dir():
            log.info(f"Found Steam at {p}")
            return p

    raise NotFound(f"No Steam installation found for {plat}; tried: {', '.join(tried) or 'nothing'}")

def steam_binary(root: Path, platform: Optional[str] = None,
                 env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Best-effort path of the Steam client executable, None if unknown."""
    env = os.environ if env is None else env
    for candidate in BINARIES.get(platform_key(platform), []):
        value = candidate(env)
        if not value:
            continue
        p = Path(value) if Path(value).is_absolute() else Path(root) / value
        if p.is_file():
            return str(p)
    return None

def resolve_library_folders(root: Path, warnings: Optional[List[ScanWarning]] = None,
                            timeout: Optional[float] = 2.0, retries: int = 1,
                            delay: float = 0.25) -> List[LibraryFolder]:
    """Library folders of a Steam root, the root's own folder always first.

    An unreadable or unparsable libraryfolders.vdf degrades to the root
    folder alone. Folders are never dropped for being missing on disk; they
    come back with ``available=False``.
    """
    root = Path(root)
    warnings = warnings if warnings is not None else []
    folders = [LibraryFolder(path=root)]

    for rel in LIBRARY_MANIFESTS:
        manifest = root / rel
        if not manifest.is_file():
            continue
        try:
            result = keyvalues.read_file(manifest, timeout=timeout, retries=retries, delay=delay)
        except (OSError, TimeoutError) as e:
            add_warning(warnings, "library", manifest, f"unreadable: {e}")
            break
        if not result.ok:
            add_warning(warnings, "library", manifest, f"unparsable: {result.error}")
            break
        if result.truncated:
            add_warning(warnings, "truncated", manifest, f"{result.warning}; using the complete entries")
        folders.extend(read_library_folders(result.tree, warnings))
        break
    else:
        log.debug(f"No libraryfolders.vdf under {root}")

    seen: Dict[str, LibraryFolder] = {}
    unique: List[LibraryFolder] = []
    for folder in folders:
        k = normalize_path(folder.path)
        if k in seen:
            kept = seen[k]
            kept.label = kept.label or folder.label
            kept.mount_id = kept.mount_id or folder.mount_id
            continue
        seen[k] = folder
        folder.available = folder.path.is_dir()
        unique.append(folder)

    log.info(f"Resolved {len(unique)} library folder(s) under {root}")
    return unique
