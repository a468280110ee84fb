"""Domain errors raised by the maintenance engine."""


class MaintenanceError(Exception):
    """Base class for maintenance engine errors."""

    summary = "Maintenance request failed."

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors if errors is not None else [message]


class RuleValidationError(MaintenanceError):
    """Rule or criteria input is malformed; nothing was persisted."""

    summary = "Invalid request input."

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors), errors)


class NotFoundError(MaintenanceError):
    """Unknown rule, scan, candidate or mark id."""

    summary = "Resource not found."


class ConflictError(MaintenanceError):
    """Request conflicts with the current state (running scan, illegal transition)."""

    summary = "Request conflicts with current state."


class ExternalAdapterError(MaintenanceError):
    """Catalog fetch or deletion call failed."""

    summary = "External service call failed."
