class MiraError(Exception):
    """Base class for errors raised inside the message pipeline."""

    code = "unknown"

    def __init__(self, message: str, *, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message


class TransientExternalFailure(MiraError):
    """A collaborator (transport, sheets, drive) failed; retrying later may succeed."""

    code = "external_failure"


class ValidationFailure(MiraError):
    """The user's request cannot be served as written."""

    code = "validation_failure"


class PersistenceFailure(MiraError):
    """Durable storage could not be read or written."""

    code = "persistence_failure"
