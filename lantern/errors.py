"""Exception types raised by the Lantern RAG engine."""


class LanternError(Exception):
    """Base class for all Lantern errors."""


class InvariantViolationError(LanternError):
    """The index is in a state that should be impossible. Fatal, never retried."""


class DimensionMismatchError(InvariantViolationError):
    """Vectors of different dimensionality met in one index."""

    def __init__(self, expected: int, actual: int, context: str = ""):
        self.expected = expected
        self.actual = actual
        message = f"Vector dimension mismatch: expected {expected}, got {actual}"
        if context:
            message += f" ({context})"
        super().__init__(message)


class MissingDocumentError(InvariantViolationError):
    """A chunk or vector refers to a record that no longer exists."""


class GenerationBusyError(LanternError):
    """A generation session is already active on this controller."""

    def __init__(self, message: str = "Generation already in progress"):
        super().__init__(message)


class GenerationTimeoutError(LanternError):
    """The session ran past its wall-clock limit."""

    def __init__(self, max_time: float):
        self.max_time = max_time
        super().__init__(f"Generation timeout after {max_time:.3g}s")


class GenerationCancelled(LanternError):
    """Raised by a model that observed cancellation and stopped early."""


class ModelNotLoadedError(LanternError):
    """No generative model is attached to the controller."""

    def __init__(self, message: str = "Text generation model not loaded"):
        super().__init__(message)
