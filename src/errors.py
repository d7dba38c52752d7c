"""
Sync Errors - Exception hierarchy for plugin registration synchronization.

Fatal errors abort a run before (or during) apply. Per-operation failures
are captured into the run report instead of propagating.
"""


class SyncError(Exception):
    """Base class for all synchronization errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MalformedDeclaration(SyncError):
    """Raised when the declaration document is structurally invalid."""


class DuplicateDeclaration(SyncError):
    """Raised when two declared entities share an identity key."""

    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f"Duplicate {kind} declaration: {key}")


class RemoteStateUnavailable(SyncError):
    """Raised when the current remote state cannot be read."""


class OperationFailed(SyncError):
    """Raised when a single create/update/delete call fails."""


class UnresolvedDependency(SyncError):
    """Raised when an operation's parent has no remote identifier.

    This indicates a plan ordering bug and aborts the remaining apply.
    """
