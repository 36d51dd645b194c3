import json
import logging
from typing import Dict
from pathlib import Path

log = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "steam_root": "",
    "max_workers": 8,
    "read_timeout": 2.0,
    "detect_executables": True,
    "detect_artwork": True,
    "ignore_patterns": [],      # added to the built-in executable ignore list
}

def load_settings(settings_file: Path) -> Dict:
    settings = json.loads(json.dumps(DEFAULT_SETTINGS))
    try:
        if settings_file.exists():
            data = json.loads(settings_file.read_text("utf-8"))
            settings.update({k: data[k] for k in settings if k in data})
    except (OSError, ValueError) as e:
        log.warning(f"Ignoring unreadable settings file {settings_file}: {e}")
    return settings

def save_settings(settings_file: Path, settings: dict) -> None:
    """Write the known keys over the defaults; unknown keys are dropped."""
    merged = dict(DEFAULT_SETTINGS)
    merged.update({k: v for k, v in settings.items() if k in DEFAULT_SETTINGS})
    settings_file = Path(settings_file)
    settings_file.parent.mkdir(parents=True, exist_ok=True)
    settings_file.write_text(json.dumps(merged, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    log.debug(f"Saved settings to {settings_file}")
