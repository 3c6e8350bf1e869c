"""
Exception taxonomy for the event lifecycle.

Every error carries the operation that raised it and whether a later retry
can succeed, matching the rest of the codebase (DatabaseError,
GoogleCalendarError).
"""


class LifecycleError(Exception):
    """Base class for lifecycle failures."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.recoverable = recoverable


class EventValidationError(LifecycleError):
    """Malformed or incomplete event data. Never fatal to a batch."""

    def __init__(self, message: str, event_id: str | None = None, operation: str = "validate"):
        super().__init__(message, operation=operation, recoverable=False)
        self.event_id = event_id


class EventNotFoundError(LifecycleError):
    def __init__(self, event_id: str, operation: str = "lookup"):
        super().__init__(f"Event {event_id} not found", operation=operation, recoverable=False)
        self.event_id = event_id


class InvalidTransitionError(LifecycleError):
    """A status change the lifecycle table does not allow."""

    def __init__(self, event_id: str, current: str, target: str, operation: str = "transition"):
        super().__init__(
            f"Event {event_id} cannot move from {current} to {target}",
            operation=operation,
            recoverable=False,
        )
        self.event_id = event_id
        self.current = current
        self.target = target


class SafetyViolation(LifecycleError):
    """The payment guard refused to proceed. Terminal for the attempt."""

    def __init__(
        self,
        message: str,
        event_id: str | None = None,
        violations: list[str] | None = None,
        payment_amount: float | None = None,
    ):
        super().__init__(message, operation="payment_guard", recoverable=False)
        self.event_id = event_id
        self.violations = violations or []
        self.payment_amount = payment_amount


class TransientIOError(LifecycleError):
    """Network, browser or backend hiccup. The next scheduled run may succeed."""

    def __init__(self, message: str, operation: str = "io", recoverable: bool = True):
        super().__init__(message, operation=operation, recoverable=recoverable)


class NotificationError(TransientIOError):
    def __init__(self, message: str, channel: str, status_code: int | None = None):
        super().__init__(message, operation=f"notify_{channel}")
        self.channel = channel
        self.status_code = status_code


class RegistrationTimeout(TransientIOError):
    def __init__(self, event_id: str, timeout_seconds: float):
        super().__init__(
            f"Registration for {event_id} exceeded {timeout_seconds:.0f}s",
            operation="register",
        )
        self.event_id = event_id


class BackendAccessError(LifecycleError):
    """Auth or permission failure against an external backend (calendar, store)."""

    def __init__(self, message: str, backend: str, operation: str = "access"):
        super().__init__(message, operation=operation, recoverable=False)
        self.backend = backend
