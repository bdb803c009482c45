"""Custom exceptions for cityworks-sync runs."""


class SyncError(Exception):
    """Base exception for all sync failures."""
    pass


class ConfigError(SyncError):
    """Raised when a setting cannot be parsed."""
    pass


class UpstreamError(SyncError):
    """Raised when the publisher returns something we cannot use."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ExportTimeoutError(UpstreamError):
    """Raised when an export is still pending at the polling deadline."""
    pass


class RecordError(SyncError):
    """Raised when a CSV record cannot be parsed."""

    def __init__(self, message, line=None):
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)
        self.line = line


class MalformedRowError(RecordError):
    """Raised for a single bad row; callers that tolerate bad rows skip it."""
    pass


class PartitionError(RecordError):
    """Raised when no usable year can be derived for a request."""
    pass


class MissingColumnError(SyncError):
    """Raised when a CSV header lacks a required column."""
    pass


class JoinError(SyncError):
    """Raised when a field row references a request not seen in this run."""
    pass


class SyncCancelled(SyncError):
    """Raised when the run observes the cancellation signal."""
    pass
