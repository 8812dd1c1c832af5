"""
Error taxonomy shared by every subsystem.

Only structural failures raise. Heuristic lookups (empty searches, no
emotional history) return empty or default values instead.
"""


class EngineError(Exception):
    """Base class for all engine errors."""
    pass


class UnknownOperation(EngineError):
    """Unknown subsystem or operation name. Always a caller bug."""
    pass


class ValidationError(EngineError):
    """A required parameter is missing or malformed. Always a caller bug."""
    pass


class NotFoundError(EngineError):
    """An entity, item, room, commit or branch does not exist."""
    pass


class ItemNotFound(NotFoundError):
    """An item is not present in the inventory it was expected in."""
    pass


class PersistenceError(EngineError):
    """Disk or version-control failure. Existing commits are left intact."""
    pass


class IncompatibleSaveError(EngineError):
    """The save was written against different game content."""

    def __init__(self, message: str, current_hash: str = "", saved_hash: str = ""):
        super().__init__(message)
        self.current_hash = current_hash
        self.saved_hash = saved_hash
