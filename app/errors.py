"""Domain errors mapped to HTTP status codes in app.main."""


class TicketValidationError(ValueError):
    """Semantically invalid input (400)."""


class InvalidTransitionError(ValueError):
    """Requested status change is not allowed from the ticket's current status (409)."""
