from typing import Optional


class SteamCrawlerError(Exception):
    """Base class for everything this package raises."""


class NotFound(SteamCrawlerError):
    """No Steam installation could be located."""


class MalformedFormat(SteamCrawlerError):
    def __init__(self, message: str, offset: int = 0, line: int = 1, column: int = 1):
        super().__init__(f"{message} (line {line}, column {column}, offset {offset})")
        self.reason = message
        self.offset = offset
        self.line = line
        self.column = column


class TruncatedInput(SteamCrawlerError):
    """Input ended inside an open block; the partial tree is still usable."""


class SkippedManifest(SteamCrawlerError):
    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class GameNotFound(SteamCrawlerError):
    def __init__(self, app_id: int):
        super().__init__(f"App {app_id} is not in the catalog.")
        self.app_id = app_id


class GameNotInstalled(SteamCrawlerError):
    def __init__(self, app_id: int, flags: int):
        super().__init__(f"App {app_id} is not fully installed (StateFlags={flags}).")
        self.app_id = app_id
        self.flags = flags


class LaunchFailed(SteamCrawlerError):
    pass
