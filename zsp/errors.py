"""
ZSP error types.

All failures are local and synchronous. None of them are retried
automatically: generation is deterministic, so repeating a call with the
same input reproduces the same failure.
"""


class PatternEngineError(Exception):
    """Base class for every error raised by the pattern engine."""


class InvalidParameterError(PatternEngineError, ValueError):
    """A pattern parameter is missing, malformed or out of range."""


class UnsupportedFamilyError(PatternEngineError, ValueError):
    """The requested pattern family is not known to the generator."""

    def __init__(self, family: object, available=None):
        self.family = family
        self.available = list(available or [])
        message = f"Unsupported pattern family: {family!r}"
        if self.available:
            message += f". Available: {self.available}"
        super().__init__(message)


class InvalidMaskError(PatternEngineError, ValueError):
    """A mask handed to metrics or analysis is empty, ragged or not square."""


class ResourceExceededError(PatternEngineError, RuntimeError):
    """Exact analysis was requested for a mask beyond the configured limit."""

    def __init__(self, sequence_length: int, limit: int):
        self.sequence_length = sequence_length
        self.limit = limit
        super().__init__(
            f"Exact information-flow analysis is limited to {limit} positions "
            f"(got {sequence_length}); use sampled mode instead"
        )


class NotFoundError(PatternEngineError, KeyError):
    """A spec or pattern id is not present in its repository."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "not found"
