"""Base exception classes for kvtrain.

This module defines the exception hierarchy used throughout the package.
All kvtrain-specific exceptions inherit from KVTrainError.
"""


class KVTrainError(Exception):
    """Base exception class for all kvtrain errors."""

    def __init__(self, message: str, suggestion: str | None = None):
        """Initialize with error message and optional suggestion.

        Args:
            message: The error message
            suggestion: Optional suggestion for fixing the error
        """
        self.message = message
        self.suggestion = suggestion

        full_message = message
        if suggestion:
            full_message += f"\n\nSuggestion: {suggestion}"

        super().__init__(full_message)


class ConfigError(KVTrainError):
    """Raised when a driver or component configuration is invalid."""
    pass


class DataError(KVTrainError):
    """Raised when data loading, parsing or batching fails."""
    pass


class KVStoreError(KVTrainError):
    """Raised when a key-value store operation fails."""
    pass


class EngineError(KVTrainError):
    """Raised when engine operations fail."""
    pass


class OptimizerError(KVTrainError):
    """Raised when optimizer construction or updates fail."""
    pass


class CheckpointError(KVTrainError):
    """Raised when checkpoint operations fail."""
    pass


class DistributedError(KVTrainError):
    """Raised when distributed initialization or coordination fails."""
    pass


# Convenience functions for common error patterns

def config_error(field: str, message: str, suggestion: str | None = None) -> ConfigError:
    """Create a ConfigError naming the offending field."""
    return ConfigError(f"Invalid configuration '{field}': {message}", suggestion)


def unknown_key_error(operation: str, key: str, known: list[str]) -> KVStoreError:
    """Create a KVStoreError for a key the store has never seen."""
    suggestion = (
        f"Initialize the key with init() first. Known keys: {sorted(known)}"
        if known
        else "Initialize the key with init() first; the store is empty"
    )
    return KVStoreError(f"KVStore {operation} failed: key '{key}' is not initialized", suggestion)


def record_error(message: str, suggestion: str | None = None) -> DataError:
    """Create a DataError for binary record streams."""
    return DataError(f"Record stream error: {message}", suggestion)
