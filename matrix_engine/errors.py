"""
Exception types raised by the matrix engine.
"""


class MatrixEngineError(Exception):
    """Base class for matrix engine errors."""

    pass


class CatalogError(MatrixEngineError):
    """Raised when a rule catalog definition is invalid."""

    pass


class DataUnavailableError(MatrixEngineError):
    """Raised when a price, earnings or holdings store cannot be read."""

    pass


class PersistenceError(MatrixEngineError):
    """Raised when alerts cannot be written."""

    pass
