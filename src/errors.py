"""Error taxonomy for the SDR experiment worker.

Every error derives from :class:`SdrWorkerError` and from the builtin
exception callers would otherwise expect (``ValueError`` for bad input or
geometry, ``FileNotFoundError`` for missing artifacts, ``OSError`` for
storage failures), so ``except ValueError`` keeps working at call sites.
"""


class SdrWorkerError(Exception):
    """Base class for all worker errors."""


class InputValidationError(SdrWorkerError, ValueError):
    """Encoder input is malformed or outside the configured range."""


class ConfigurationError(SdrWorkerError, ValueError):
    """Encoder or renderer geometry is invalid."""


class ShapeError(SdrWorkerError, ValueError):
    """A vector cannot be reshaped into the requested grid."""


class SchemaError(SdrWorkerError, ValueError):
    """A message or batch input file does not match its expected schema."""


class NotFoundError(SdrWorkerError, FileNotFoundError):
    """A named input artifact does not exist in storage."""


class TransientIOError(SdrWorkerError, OSError):
    """A storage or queue operation failed and may succeed on redelivery."""
