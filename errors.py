class ValidationError(ValueError):
    """A request breaks a data rule (unknown reference, protected record...)."""


class NotFoundError(ValidationError):
    pass


class NotConfiguredError(RuntimeError):
    """Sync was requested but the provider credentials are not stored."""


class SyncInProgressError(RuntimeError):
    pass


class TransferError(RuntimeError):
    """The remote backup provider reported a failure."""


class StoreUnavailableError(RuntimeError):
    """The record store is closed, usually because a sync is running."""


class StoreIntegrityError(ValueError):
    pass


class StoreReopenError(RuntimeError):
    """The record store could not be reopened after a sync.

    The application has no usable store left; callers should escalate.
    """
