"""Domain exceptions raised by the intake engine.

Routers translate these to HTTP responses; services raise them before any
state is written so a failed operation leaves no partial records behind.
"""


class IntakeError(Exception):
    """Base class for intake engine errors."""


class NotFoundError(IntakeError):
    """A referenced customer, intake, or document does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidInputError(IntakeError):
    """Input is malformed or missing a required field."""


class GateClosedError(IntakeError):
    """The intake's current status does not permit the requested action."""

    def __init__(self, status: str, message: str):
        self.status = status
        super().__init__(message)


class AnalysisUnavailableError(IntakeError):
    """The analysis adapter could not produce a result.

    ``reason`` is one of: quota, auth, timeout, config, invalid_output, unavailable.
    """

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)
