class AudioPrintError(Exception):
    """Base class for errors raised by the index and matching layers."""


class StoreUnavailable(AudioPrintError):
    """The catalog or posting store could not be reached.

    Surfaced to the caller as-is; retry policy belongs to whoever called us.
    """


class MalformedQuery(AudioPrintError, ValueError):
    """Hash values or a request payload could not be interpreted."""
