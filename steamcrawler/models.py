from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

# Decoded key-value tree: a scalar leaf or an ordered mapping of nodes.
KeyValueNode = Union[str, Dict[str, "KeyValueNode"]]

@dataclass
class LibraryFolder:
    path: Path
    label: str = ""
    mount_id: str = ""              # libraryfolders.vdf "contentid"
    available: bool = True

    @property
    def apps_dir(self) -> Path:
        steamapps = self.path / "steamapps"
        return steamapps if steamapps.is_dir() else self.path

@dataclass
class InstallState:
    flags: int
    installed: bool
    update_pending: bool = False
    invalid: bool = False

    @property
    def complete(self) -> bool:
        return self.installed and not self.invalid

@dataclass
class GameRecord:
    app_id: int
    name: str
    install_dir: str                # relative to <apps_dir>/common
    library: Path
    state: InstallState
    size_on_disk: int = 0
    executable: Optional[str] = None  # relative to install_path
    last_updated: int = 0
    build_id: str = ""
    manifest_path: Optional[Path] = None
    manifest_mtime: float = 0.0
    icon_path: Optional[Path] = None
    cover_path: Optional[Path] = None

    @property
    def install_path(self) -> Path:
        return LibraryFolder(self.library).apps_dir / "common" / self.install_dir

@dataclass
class ScanWarning:
    kind: str                       # truncated|malformed|skipped|unreadable|superseded|folder|state|library
    path: str
    message: str

    def __str__(self) -> str:
        return f"[{self.kind}] {self.path}: {self.message}"

@dataclass
class Catalog:
    games: Dict[int, GameRecord] = field(default_factory=dict)
    warnings: List[ScanWarning] = field(default_factory=list)
    steam_root: Optional[Path] = None
    libraries: List[LibraryFolder] = field(default_factory=list)

    def get(self, app_id: int) -> Optional[GameRecord]:
        return self.games.get(int(app_id))

    def __len__(self) -> int:
        return len(self.games)

@dataclass
class LaunchRequest:
    app_id: int
    args: List[str] = field(default_factory=list)

@dataclass
class LaunchCommand:
    app_id: int
    uri: str
    argv: List[str]                 # dispatches the URI through the OS handler
    fallbacks: List[List[str]] = field(default_factory=list)
    cwd: Optional[str] = None

@dataclass
class SteamContext:
    root: Path
    platform: str                   # windows|macos|linux
    config: Dict = field(default_factory=dict)
