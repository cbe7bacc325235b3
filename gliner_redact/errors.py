from __future__ import annotations


class RedactionError(RuntimeError):
    pass


class ConfigurationError(RedactionError):
    """Raised when a component is used before it is initialized or is misconfigured."""


class ModelUnavailableError(RedactionError):
    """Raised when model files are missing or an executor session cannot be built."""


class ExecutionError(RedactionError):
    def __init__(self, message: str, *, window_index: int | None = None) -> None:
        super().__init__(message)
        self.window_index = window_index
