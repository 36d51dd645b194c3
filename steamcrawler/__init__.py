import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from .errors import (
    GameNotFound, GameNotInstalled, LaunchFailed, MalformedFormat,
    NotFound, SkippedManifest, SteamCrawlerError, TruncatedInput,
)
from .launch import build_launch_action, run_launch_command
from .models import Catalog, GameRecord, LaunchCommand, LaunchRequest, LibraryFolder, SteamContext
from .paths import resolve_library_folders, resolve_steam_root
from .scanning import DEFAULT_CONFIG, build_catalog
from .settings import DEFAULT_SETTINGS, load_settings
from .utils import platform_key

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())

__version__ = "0.3.0"

def _env_number(env: Mapping[str, str], name: str, kind, default):
    raw = env.get(name)
    if raw is None:
        return kind(default)
    try:
        return kind(raw)
    except ValueError:
        log.warning(f"Ignoring ${name}={raw!r}: not a number, using {default}")
        return kind(default)

def create_context(steam_root: Optional[str] = None, settings_file: Optional[str] = None,
                   platform: Optional[str] = None,
                   env: Optional[Mapping[str, str]] = None) -> SteamContext:
    """Resolve the Steam root once and collect scan configuration.

    Raises NotFound when no Steam installation exists.
    """
    env = os.environ if env is None else env
    settings_file = settings_file or env.get("STEAMCRAWLER_SETTINGS")
    settings = load_settings(Path(settings_file)) if settings_file else dict(DEFAULT_SETTINGS)

    plat = platform_key(platform)
    root = resolve_steam_root(steam_root, plat, env, configured=settings["steam_root"] or None)

    config = dict(DEFAULT_CONFIG)
    config["STEAM_ROOT"] = str(root)
    config["SETTINGS_FILE"] = settings_file
    config["MAX_WORKERS"] = _env_number(env, "STEAMCRAWLER_MAX_WORKERS", int, settings["max_workers"])
    config["READ_TIMEOUT"] = _env_number(env, "STEAMCRAWLER_READ_TIMEOUT", float, settings["read_timeout"])
    config["DETECT_EXECUTABLES"] = bool(settings["detect_executables"])
    config["DETECT_ARTWORK"] = bool(settings["detect_artwork"])
    config["IGNORE_PATTERNS"] = list(DEFAULT_CONFIG["IGNORE_PATTERNS"]) + list(settings["ignore_patterns"])
    return SteamContext(root=root, platform=plat, config=config)

def scan(ctx: Optional[SteamContext] = None) -> Catalog:
    """Discover every installed game. Only NotFound escapes."""
    ctx = ctx or create_context()
    cfg = dict(DEFAULT_CONFIG, **ctx.config)
    warnings = []
    folders = resolve_library_folders(ctx.root, warnings,
                                      timeout=cfg["READ_TIMEOUT"],
                                      retries=cfg["READ_RETRIES"],
                                      delay=cfg["READ_RETRY_DELAY"])
    catalog = build_catalog(folders, root=ctx.root, config=cfg)
    catalog.warnings[:0] = warnings
    return catalog

def launch(request: LaunchRequest, catalog: Optional[Catalog] = None,
           ctx: Optional[SteamContext] = None, dispatch: bool = True) -> LaunchCommand:
    """Build the launch command for `request` and, unless told not to, start it.

    Raises GameNotFound / GameNotInstalled from the decision step and
    LaunchFailed when no invocation could be started.
    """
    if catalog is None:
        ctx = ctx or create_context()
        catalog = scan(ctx)
    cmd = build_launch_action(catalog, request, platform=ctx.platform if ctx else None)
    if dispatch:
        ok, msg = run_launch_command(cmd)
        if not ok:
            raise LaunchFailed(msg)
    return cmd

__all__ = [
    "Catalog", "GameRecord", "LaunchCommand", "LaunchRequest", "LibraryFolder", "SteamContext",
    "SteamCrawlerError", "NotFound", "MalformedFormat", "TruncatedInput", "SkippedManifest",
    "GameNotFound", "GameNotInstalled", "LaunchFailed",
    "create_context", "scan", "launch",
]
