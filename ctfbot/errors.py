"""Error categories shared across the bot."""


class UserInputError(Exception):
    """Bad or missing input from a chat; the message is shown to the user as-is."""


class UpstreamUnavailable(RuntimeError):
    """CTFd or CTFtime returned a non-success status, failed, or sent garbage."""


class PersistenceError(Exception):
    """A JSON collection could not be written."""
