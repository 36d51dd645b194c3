# steamcrawler/launch.py
from __future__ import annotations

import logging
import shlex
import subprocess
import threading
from pathlib import Path
from typing import Tuple, List, Optional, Mapping
from urllib.parse import quote

from .errors import GameNotFound, GameNotInstalled
from .models import Catalog, LaunchCommand, LaunchRequest
from .paths import steam_binary
from .utils import platform_key

log = logging.getLogger(__name__)

# OS handlers able to dispatch a steam:// URI to a running client
URI_HANDLERS = {
    "windows": ["cmd", "/c", "start", ""],
    "macos": ["open"],
    "linux": ["xdg-open"],
}

# ──────────────────────────────────────────────────────────────────────────────
# Small helpers
# ──────────────────────────────────────────────────────────────────────────────

def _request_args(request: LaunchRequest) -> List[str]:
    args = request.args or []
    if isinstance(args, str):
        return shlex.split(args, posix=True)
    return [str(a) for a in args]

def _join_args(args: List[str], plat: str) -> str:
    if plat == "windows":
        return subprocess.list2cmdline(args)
    return shlex.join(args)

def steam_uri(app_id: int, args: Optional[List[str]] = None, platform: Optional[str] = None) -> str:
    """steam://rungameid/<id>, or steam://run/<id>//<args>/ when there are arguments."""
    if not args:
        return f"steam://rungameid/{app_id}"
    return f"steam://run/{app_id}//{quote(_join_args(args, platform_key(platform)), safe='')}/"

def _spawn(argv: List[str], cwd: Optional[str]) -> Tuple[bool, str]:
    """
    Start the process without waiting for it. A daemon thread reaps it so
    no zombie is left behind on POSIX.
    """
    try:
        p = subprocess.Popen(argv, cwd=cwd, stdin=subprocess.DEVNULL)
    except (OSError, ValueError) as e:
        return False, str(e)

    if hasattr(p, "wait"):
        def _wait():
            code = p.wait()
            log.debug(f"{argv[0]} exited with {code}")

        threading.Thread(target=_wait, daemon=True).start()

    return True, "Launched."

# ──────────────────────────────────────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────────────────────────────────────

def build_launch_action(catalog: Catalog, request: LaunchRequest, platform: Optional[str] = None,
                        env: Optional[Mapping[str, str]] = None) -> LaunchCommand:
    """
    Decide how to launch `request.app_id` without starting anything.

    - Raises GameNotFound if the app id is not in the catalog.
    - Raises GameNotInstalled if its install state is incomplete or invalid.
    - Primary invocation hands a steam:// URI to the OS handler; fallbacks are
      the Steam binary with -applaunch, then the game's own executable.
    """
    app_id = int(request.app_id)
    record = catalog.get(app_id)
    if record is None:
        raise GameNotFound(app_id)
    if not record.state.complete:
        raise GameNotInstalled(app_id, record.state.flags)

    plat = platform_key(platform)
    args = _request_args(request)
    uri = steam_uri(app_id, args, plat)
    argv = URI_HANDLERS[plat] + [uri]

    fallbacks: List[List[str]] = []
    cwd = None
    if catalog.steam_root is not None:
        binary = steam_binary(catalog.steam_root, plat, env)
        if binary:
            fallbacks.append([binary, "-applaunch", str(app_id)] + args)
    if record.executable:
        exe = record.install_path / record.executable
        fallbacks.append([str(exe)] + args)
        cwd = str(exe.parent)

    log.debug(f"Launch action for {app_id}: {argv} (+{len(fallbacks)} fallback(s))")
    return LaunchCommand(app_id=app_id, uri=uri, argv=argv, fallbacks=fallbacks, cwd=cwd)

def run_launch_command(cmd: LaunchCommand) -> Tuple[bool, str]:
    """
    Fire-and-forget: try the URI handler, then each fallback in order.
    Returns (ok, message) like the rest of the launch helpers.
    """
    errors = []
    cwd = cmd.cwd if cmd.cwd and Path(cmd.cwd).is_dir() else None
    for argv in [cmd.argv] + cmd.fallbacks:
        ok, msg = _spawn(argv, cwd)
        if ok:
            log.info(f"Launched app {cmd.app_id} via {argv[0]}")
            return ok, msg
        log.warning(f"Launching app {cmd.app_id} via {argv[0]} failed: {msg}")
        errors.append(f"{argv[0]}: {msg}")
    return False, "; ".join(errors) or "Nothing to launch."