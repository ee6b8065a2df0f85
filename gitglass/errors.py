from __future__ import annotations


class GitglassError(Exception):
    """Base class for errors raised by gitglass."""


class ConfigError(GitglassError):
    pass


class NotFound(GitglassError):
    def __init__(self, what: str = "not found") -> None:
        super().__init__(what)


class InvalidInput(GitglassError):
    pass


class UpstreamSyncError(GitglassError):
    """A clone or fetch against a configured remote failed."""

    def __init__(self, slug: str, url: str, message: str) -> None:
        super().__init__(f"{slug}: sync from {url} failed: {message}")
        self.slug = slug
        self.url = url


class RenderError(GitglassError):
    pass
