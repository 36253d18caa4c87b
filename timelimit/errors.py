"""Exception hierarchy for timelimit."""


class TimeLimitError(Exception):
    """Base class for all timelimit errors."""


class StorageError(TimeLimitError):
    """Reading from or writing to the usage database failed."""


class ConfigError(TimeLimitError):
    """The limit table or one of its duration/time expressions is malformed."""


class CapabilityError(TimeLimitError):
    """A session or notification action could not be carried out."""


class NoConsoleUserError(CapabilityError):
    """Nobody is logged in; the console belongs to the login window."""
