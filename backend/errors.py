"""Error taxonomy of the document engine.

Services raise these; the API layer turns them into JSON responses with the
matching status code (see main.py). None of them should crash the process.
"""


class EngineError(Exception):
    """Base class for every failure the engine reports to its caller."""

    code = "error"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(EngineError):
    """A referenced document, section, item, client or template is absent."""

    code = "not_found"
    status_code = 404


class Locked(EngineError):
    """A tree mutation was attempted on a document in a locked state."""

    code = "locked"
    status_code = 409


class InvalidTransition(EngineError):
    """The requested lifecycle move is not allowed from the current status."""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, message: str, current: str = None, target: str = None):
        super().__init__(message)
        self.current = current
        self.target = target


class Conflict(EngineError):
    """Document numbering lost a race too many times."""

    code = "conflict"
    status_code = 409


class ValidationError(EngineError):
    """A required field is missing or a value is not acceptable."""

    code = "validation_error"
    status_code = 400
