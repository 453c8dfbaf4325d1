"""Exception types raised by the chain engine."""


class MarkovChainError(Exception):
    """Base class for all markovgen errors."""


class ConfigurationError(MarkovChainError, ValueError):
    """Invalid construction or call parameters."""


class EmptyChainError(MarkovChainError, RuntimeError):
    """Generation was requested from a chain without edges."""


class StoreUnavailableError(MarkovChainError, RuntimeError):
    """The backing store is closed or could not be opened."""


class WriteContentionError(MarkovChainError, RuntimeError):
    """The store stayed locked past its busy timeout.

    Retryable: training the same file again is safe once the other writer
    has finished.
    """
