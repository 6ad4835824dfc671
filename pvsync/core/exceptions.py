"""Error taxonomy for the image sync engine."""


class SyncError(Exception):
    """Base class for image sync errors."""

    def __init__(self, message: str = "", **context):
        self.message = message
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class ValidationError(SyncError):
    """Image rejected before any state changed (size, extension, quota)."""


class ContentHashError(SyncError):
    """Image file could not be read for hashing."""


class TransientNetworkError(SyncError):
    """Remote call failed in a way that may succeed when retried."""


class RemoteStoreError(SyncError):
    """Remote store answered with a non-retryable error."""

    def __init__(self, message: str = "", status_code: int | None = None, **context):
        self.status_code = status_code
        super().__init__(message, status_code=status_code, **context)


class NotFoundError(SyncError):
    """Expected object is missing (remote file, catalog entry, local record)."""


class CatalogInconsistency(SyncError):
    """Local and catalog state disagree in a way the engine cannot repair."""


class UploadDeferred(SyncError):
    """No upload slot was free; the image stays queued for the next pass."""


class UploadFailed(SyncError):
    """Upload did not succeed after the configured attempts."""


class DownloadFailed(SyncError):
    """Download did not succeed after the configured attempts."""
