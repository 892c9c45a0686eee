## errors.py
"""
Exceptions raised by the random indexing pipeline.
"""


class RandomIndexingError(Exception):
    """Base error."""
    pass


class ConfigurationError(RandomIndexingError, ValueError):
    """Raised before any processing for an invalid n, m, min_count or seed."""
    pass


class UnknownTokenError(RandomIndexingError, KeyError):
    """Raised on lookup of a token never seen, or seen but filtered out."""

    def __init__(self, token: str):
        super().__init__(token)
        self.token = token

    def __str__(self):
        return f"Token not in embedding table: {self.token!r}"


class MalformedContextError(RandomIndexingError):
    """Raised in strict mode when a context cannot be tokenized."""

    def __init__(self, context_id: int, reason: str):
        super().__init__(f"Context {context_id} is malformed: {reason}")
        self.context_id = context_id
        self.reason = reason


class DuplicateContextError(RandomIndexingError):
    """Raised when a context id is indexed twice."""
    pass


class AccumulationCancelled(RandomIndexingError):
    """
    Raised when accumulation is stopped between shards.
    `completed` maps every fully accumulated token to its sum.
    """

    def __init__(self, completed: dict):
        super().__init__(f"Accumulation cancelled after {len(completed)} tokens")
        self.completed = completed
