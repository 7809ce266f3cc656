class AuditGuardError(Exception):
    """Base class for pipeline errors."""


class LedgerIntegrityError(AuditGuardError):
    """The hash chain no longer verifies. History can't be trusted past `index`."""

    def __init__(self, message: str, *, index: int | None = None, event_id: str | None = None,
                 reason: str | None = None):
        super().__init__(message)
        self.index = index
        self.event_id = event_id
        self.reason = reason


class LedgerWriteError(AuditGuardError):
    """An event could not be durably written; the chain head was not advanced."""


class RuleConfigError(AuditGuardError):
    """A breach rule definition was rejected."""


class DeliveryError(AuditGuardError):
    """A webhook or SIEM endpoint did not accept a payload."""
