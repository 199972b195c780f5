"""Exception types raised by the checkpoint/restart layer.

Encoding failures come from the byte packer, I/O failures come from the
file backend. Callers tell them apart by type.
"""


class SimRestartError(Exception):
    """Base class for all checkpoint/restart errors."""


class EncodingError(SimRestartError):
    """Raised when a value cannot be packed to, or unpacked from, bytes."""


class BackendIOError(SimRestartError):
    """Raised when the file backend fails to write, read or list data."""
