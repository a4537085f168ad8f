"""Exception types raised by the expense engine."""


class ExpenseEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(ExpenseEngineError):
    """Input failed a structural or business validation."""


class NotFoundError(ExpenseEngineError):
    """A referenced record does not exist."""


class StorageError(ExpenseEngineError):
    """The backing expense store could not be read."""


class RulesError(ExpenseEngineError):
    """A static rule table is missing or malformed."""


class CollaboratorTimeout(ExpenseEngineError):
    """An external collaborator did not answer before the deadline."""
