import fnmatch
import logging
import os
import sys
import time
import threading
from pathlib import Path
from typing import Optional, List
from PIL import Image

from .models import ScanWarning

log = logging.getLogger(__name__)

# transient errors raised while Steam holds a manifest open for writing
TRANSIENT_READ_ERRORS = (PermissionError, BlockingIOError, InterruptedError)

def platform_key(name: Optional[str] = None) -> str:
    name = name or sys.platform
    if name in ("windows", "macos", "linux"):
        return name
    if name.startswith("win") or name == "cygwin":
        return "windows"
    if name == "darwin":
        return "macos"
    return "linux"

def is_windows() -> bool:
    return os.name == "nt"

def normalize_path(p) -> str:
    try:
        resolved = os.path.realpath(os.fspath(p))
    except OSError:
        resolved = os.path.abspath(os.fspath(p))
    return os.path.normcase(resolved.rstrip("\\/") or resolved)

def add_warning(warnings: Optional[List[ScanWarning]], kind: str, path, message: str) -> None:
    log.warning(f"{path}: {message}")
    if warnings is not None:
        warnings.append(ScanWarning(kind=kind, path=str(path), message=message))

def read_text(path: Path, retries: int = 1, delay: float = 0.25) -> str:
    """Read a text file, retrying transient lock errors `retries` times."""
    attempt = 0
    while True:
        try:
            return Path(path).read_text(encoding="utf-8", errors="replace")
        except TRANSIENT_READ_ERRORS as e:
            if attempt >= retries:
                raise
            attempt += 1
            log.debug(f"Retrying locked file {path} after {e!r}")
            time.sleep(delay)

def timed_read_text(path: Path, timeout: float, retries: int = 1, delay: float = 0.25) -> str:
    """read_text() that gives up after `timeout` seconds.

    The read runs on a daemon thread; a read stuck on a locked handle is
    abandoned rather than waited for. Raises TimeoutError in that case.
    """
    box: dict = {}

    def _read():
        try:
            box["text"] = read_text(path, retries=retries, delay=delay)
        except Exception as e:  # re-raised in the caller's thread
            box["error"] = e

    t = threading.Thread(target=_read, name=f"read-{Path(path).name}", daemon=True)
    t.start()
    t.join(timeout)
    if t.is_alive():
        raise TimeoutError(f"Timed out reading {path} after {timeout:.1f}s")
    if "error" in box:
        raise box["error"]
    return box["text"]

def pick_best_image(candidates: List[Path], target_ar: float) -> Optional[Path]:
    best = None
    best_score = float("inf")
    best_area = -1
    for f in candidates:
        try:
            with Image.open(f) as im:
                w, h = im.size
        except (OSError, ValueError) as e:
            log.debug(f"Ignoring unreadable image {f}: {e}")
            continue
        if w <= 0 or h <= 0:
            continue
        score = abs(w / h - target_ar)
        area = w * h
        if score < best_score or (abs(score - best_score) < 1e-6 and area > best_area):
            best, best_score, best_area = f, score, area
    return best

# --- ignore patterns (gitignore-ish) ---

def _match_any(path_rel: str, patterns: List[str]) -> bool:
    """Gitignore-like matching, case-insensitive, last matching rule wins.

    - 'redist/' matches 'redist' and everything under it, at any depth
    - '*CrashHandler*' globs against every path component
    - '!keep/' re-includes a previously ignored path
    """
    pr = path_rel.replace("\\", "/").strip("/").lower()
    parts = pr.split("/")
    decided: Optional[bool] = None

    for raw in patterns:
        neg = raw.startswith("!")
        pat = (raw[1:] if neg else raw).replace("\\", "/").lstrip("/").lower()

        if pat.endswith("/"):
            base = pat[:-1]
            hit = any(fnmatch.fnmatch(part, base) for part in parts)
        else:
            hit = fnmatch.fnmatch(pr, pat) or any(fnmatch.fnmatch(part, pat) for part in parts)

        if hit:
            decided = not neg

    return bool(decided)

def is_path_ignored(root: Path, path: Path, patterns: List[str]) -> bool:
    if not patterns:
        return False
    rel = path.relative_to(root).as_posix()
    return _match_any(rel, patterns)
