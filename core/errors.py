"""
Error types for Crenors
Raised by the leveling, poll and ticket managers and rendered by the cogs
"""


class BotError(Exception):
    """Base class for errors that are shown to the user"""

    title = "Error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class NotFoundError(BotError):
    """Referenced entity does not exist"""

    title = "Not Found"


class ConflictError(BotError):
    """Operation would break a uniqueness invariant"""

    title = "Conflict"


class AlreadyVotedError(ConflictError):
    """User already holds a vote in a single-vote poll"""

    title = "Already Voted"


class InvalidStateError(BotError):
    """Operation is not valid for the entity's current lifecycle state"""

    title = "Invalid State"


class ForbiddenError(BotError):
    """Role or permission requirement not met"""

    title = "No Permission"


class ValidationError(BotError):
    """Malformed input"""

    title = "Invalid Input"


class InvalidOptionError(ValidationError):
    """Poll option is not one of the poll's options"""

    title = "Invalid Option"


class ExpiredError(BotError):
    """Time-boxed entity is no longer actionable"""

    title = "Expired"


class TransientError(BotError):
    """Persistence or transport I/O failure, safe to retry"""

    title = "Temporary Failure"
