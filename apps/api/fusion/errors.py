"""Fusion layer error taxonomy.

A missing prediction is never an error: absent sources are ``None`` and are
handled by the fallback chains in the trust manager.
"""


class FusionError(Exception):
    """Base class for fusion layer failures."""


class StorageError(FusionError):
    """Raised when an append/query against a metrics or training store fails."""


class TrainingError(FusionError):
    """Raised when the external trainer rejects or fails an incremental batch."""


class TrainerUnavailableError(TrainingError):
    """Raised when no incremental trainer is configured."""
