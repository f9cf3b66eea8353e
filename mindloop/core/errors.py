class MindError(Exception):
    """Base class for errors raised inside the mind loop."""


class ActionValidationError(MindError):
    """An action failed the permission gate or is missing required fields."""


class OracleError(MindError):
    """The language model timed out, errored, or returned unusable output."""


class ExecutionError(MindError):
    """An I/O, shell or network collaborator failed."""


class PersistenceError(MindError):
    """Saving state, archiving, or writing the audit log failed."""


class CorruptStateError(MindError):
    """A persisted document could not be parsed."""
