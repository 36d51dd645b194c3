import logging
import os
import re
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from . import keyvalues
from .errors import SkippedManifest
from .manifests import read_game_record
from .models import Catalog, GameRecord, LibraryFolder, ScanWarning
from .utils import add_warning, is_path_ignored, is_windows, pick_best_image

log = logging.getLogger(__name__)

MANIFEST_GLOB = "appmanifest_*.acf"

DEFAULT_CONFIG = {
    "MAX_WORKERS": 8,
    "READ_TIMEOUT": 2.0,
    "READ_RETRIES": 1,
    "READ_RETRY_DELAY": 0.25,
    "DETECT_EXECUTABLES": True,
    "DETECT_ARTWORK": True,
    "DETECT_TIMEOUT": 10.0,
    "MAX_SCAN_DEPTH": 2,
    "EXEC_EXTS": {".exe", ".bat", ".cmd", ".sh", ".x86_64", ".x86", ".appimage", ".bin", ".run"},
    "IGNORE_PATTERNS": [
        "_CommonRedist/", "CommonRedist/", "redist/", "redistributables/", "DirectX/",
        "EasyAntiCheat/", "BattlEye/", "*redist*", "*CrashHandler*", "*crashreport*",
        "*uninst*", "*setup*", "dotnet*", "vc_*",
    ],
    "TARGET_AR": 600 / 900,
}

_ICON_HASH = re.compile(r"[0-9a-f]{40}\.jpg$")

# ──────────────────────────────────────────────────────────────────────────────
# Executable hints and artwork
# ──────────────────────────────────────────────────────────────────────────────

def _is_executable(p: Path, exts: set) -> bool:
    suffix = p.suffix.lower()
    if suffix in exts:
        return True
    return not is_windows() and suffix == "" and os.access(p, os.X_OK)

def iter_executables(install_path: Path, exts: set, max_depth: int,
                     patterns: Optional[List[str]] = None) -> Iterator[str]:
    """Yield executables from the shallowest level of `install_path` that has any.

    Levels are walked one at a time, so a launcher in the install root hides
    the tool binaries further down. Paths are relative, posix-style.
    """
    patterns = patterns or []
    level = [install_path]
    for _ in range(max_depth + 1):
        hits: List[Path] = []
        subdirs: List[Path] = []
        for cur in level:
            try:
                entries = [e for e in cur.iterdir() if not is_path_ignored(install_path, e, patterns)]
            except OSError:
                continue
            for e in entries:
                if e.is_dir():
                    subdirs.append(e)
                elif e.is_file() and _is_executable(e, exts):
                    hits.append(e)
        if hits:
            yield from sorted((h.relative_to(install_path).as_posix() for h in hits), key=str.lower)
            return
        level = subdirs

def _norm(s: str) -> str:
    return "".join(c for c in s.lower() if c.isalnum())

def pick_executable(candidates: Sequence[str], *names: str) -> Optional[str]:
    """Prefer an executable named like the game, else the first candidate."""
    wanted = [w for w in (_norm(n) for n in names if n) if w]
    stems = [(c, _norm(Path(c).stem)) for c in candidates]
    for w in wanted:
        for c, stem in stems:
            if stem == w:
                return c
    for w in wanted:
        for c, stem in stems:
            if stem and (stem in w or w in stem):
                return c
    return candidates[0] if candidates else None

def find_artwork(steam_root: Optional[Path], app_id: int,
                 target_ar: float) -> Tuple[Optional[Path], Optional[Path]]:
    """(icon, cover) from Steam's library cache, either may be None.

    Older clients keep flat `<appid>_icon.jpg` style files; newer ones use a
    per-app directory holding `library_600x900.jpg` and a hashed icon.
    """
    if steam_root is None:
        return None, None
    cache = Path(steam_root) / "appcache" / "librarycache"
    app_dir = cache / str(app_id)

    icon = None
    try:
        icon = next((p for p in sorted(app_dir.iterdir()) if _ICON_HASH.match(p.name)), None)
    except OSError:
        pass
    if icon is None and (cache / f"{app_id}_icon.jpg").is_file():
        icon = cache / f"{app_id}_icon.jpg"

    names = [
        app_dir / "library_600x900.jpg",
        app_dir / "library_600x900_2x.jpg",
        app_dir / "header.jpg",
        app_dir / "library_hero.jpg",
        cache / f"{app_id}_library_600x900.jpg",
        cache / f"{app_id}_library_600x900_2x.jpg",
        cache / f"{app_id}_header.jpg",
        cache / f"{app_id}_library_hero.jpg",
    ]
    covers = [p for p in names if p.is_file()]
    return icon, pick_best_image(covers, target_ar) if covers else None

def _detect_extras(record: GameRecord, steam_root: Optional[Path], cfg: dict):
    exe = icon = cover = None
    if cfg["DETECT_EXECUTABLES"] and record.install_dir:
        game_dir = record.install_path
        if game_dir.is_dir():
            execs = list(iter_executables(game_dir, set(cfg["EXEC_EXTS"]), int(cfg["MAX_SCAN_DEPTH"]),
                                          patterns=list(cfg["IGNORE_PATTERNS"])))
            exe = pick_executable(execs, record.name, record.install_dir)
    if cfg["DETECT_ARTWORK"]:
        icon, cover = find_artwork(steam_root, record.app_id, float(cfg["TARGET_AR"]))
    return exe, icon, cover

# ──────────────────────────────────────────────────────────────────────────────
# Manifest reading and merging
# ──────────────────────────────────────────────────────────────────────────────

def list_manifests(folder: LibraryFolder) -> List[Path]:
    return sorted(p for p in folder.apps_dir.glob(MANIFEST_GLOB) if p.is_file())

def read_manifest(manifest: Path, folder: LibraryFolder,
                  cfg: dict) -> Tuple[Optional[GameRecord], List[ScanWarning]]:
    """Read one appmanifest; never raises for per-file problems."""
    warnings: List[ScanWarning] = []
    try:
        mtime = manifest.stat().st_mtime
        result = keyvalues.read_file(manifest, retries=int(cfg["READ_RETRIES"]),
                                     delay=float(cfg["READ_RETRY_DELAY"]))
    except OSError as e:
        add_warning(warnings, "unreadable", manifest, str(e))
        return None, warnings

    if not result.ok:
        add_warning(warnings, "malformed", manifest, str(result.error))
        return None, warnings
    if result.truncated:
        add_warning(warnings, "truncated", manifest, f"{result.warning}; keeping the complete fields")

    try:
        record = read_game_record(result.tree, warnings, manifest_path=manifest, library=folder.path)
    except SkippedManifest as e:
        add_warning(warnings, "skipped", manifest, str(e))
        return None, warnings

    record.manifest_mtime = mtime
    log.debug(f"Read app {record.app_id} ({record.name}) from {manifest}")
    return record, warnings

def _newer(a: GameRecord, b: GameRecord) -> bool:
    return (a.manifest_mtime, str(a.manifest_path)) > (b.manifest_mtime, str(b.manifest_path))

def merge_record(games: Dict[int, GameRecord], record: GameRecord,
                 warnings: List[ScanWarning]) -> None:
    """Insert `record`; on an app id clash the newer manifest wins."""
    existing = games.get(record.app_id)
    if existing is None:
        games[record.app_id] = record
        return
    winner, loser = (record, existing) if _newer(record, existing) else (existing, record)
    games[record.app_id] = winner
    add_warning(warnings, "superseded", loser.library,
                f"app {record.app_id} in {loser.library} superseded by newer manifest in {winner.library}")

def build_catalog(folders: Sequence[LibraryFolder], root: Optional[Path] = None,
                  config: Optional[dict] = None) -> Catalog:
    """Scan every library folder into one Catalog.

    Per-folder and per-manifest problems become warnings on the Catalog.
    Record content does not depend on scan order: clashes are settled by
    manifest modification time alone.
    """
    cfg = dict(DEFAULT_CONFIG)
    cfg.update(config or {})
    catalog = Catalog(steam_root=Path(root) if root else None, libraries=list(folders))

    jobs: List[Tuple[Path, LibraryFolder]] = []
    for folder in folders:
        if not folder.available:
            add_warning(catalog.warnings, "folder", folder.path, "library folder is not available")
            continue
        try:
            manifests = list_manifests(folder)
        except OSError as e:
            add_warning(catalog.warnings, "folder", folder.path, f"cannot list manifests: {e}")
            continue
        log.debug(f"{len(manifests)} manifest(s) in {folder.apps_dir}")
        jobs.extend((m, folder) for m in manifests)

    executor = ThreadPoolExecutor(max_workers=max(1, int(cfg["MAX_WORKERS"])),
                                  thread_name_prefix="steamcrawler")
    try:
        pending = [(m, executor.submit(read_manifest, m, folder, cfg)) for m, folder in jobs]
        for manifest, future in pending:
            try:
                record, warnings = future.result(timeout=float(cfg["READ_TIMEOUT"]))
            except FutureTimeout:
                add_warning(catalog.warnings, "unreadable", manifest,
                            f"timed out after {cfg['READ_TIMEOUT']}s")
                continue
            except Exception as e:
                log.debug(f"Reader for {manifest} failed", exc_info=True)
                add_warning(catalog.warnings, "malformed", manifest, f"{type(e).__name__}: {e}")
                continue
            catalog.warnings.extend(warnings)
            if record is not None:
                merge_record(catalog.games, record, catalog.warnings)

        if cfg["DETECT_EXECUTABLES"] or cfg["DETECT_ARTWORK"]:
            extras: Dict[int, Future] = {
                app_id: executor.submit(_detect_extras, record, catalog.steam_root, cfg)
                for app_id, record in catalog.games.items()
            }
            for app_id, future in extras.items():
                record = catalog.games[app_id]
                try:
                    record.executable, record.icon_path, record.cover_path = \
                        future.result(timeout=float(cfg["DETECT_TIMEOUT"]))
                except FutureTimeout:
                    log.warning(f"Gave up looking for executables/artwork of app {app_id}")
                except Exception as e:
                    log.warning(f"Executable/artwork lookup failed for app {app_id}: {e}")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    log.info(f"Scanned {len(catalog.games)} game(s) in {len(folders)} folder(s), "
             f"{len(catalog.warnings)} warning(s)")
    return catalog
