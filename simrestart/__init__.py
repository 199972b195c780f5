"""simrestart: checkpoint/restart serialization for parallel simulations."""

__version__ = "0.1.0"

from .errors import BackendIOError, EncodingError, SimRestartError  # noqa: E402
from .io import DataSetMode, OpenMode  # noqa: E402
from .checkpoint import HDF5Serializer, SimulatorInfo  # noqa: E402

__all__ = [
    "BackendIOError",
    "EncodingError",
    "SimRestartError",
    "DataSetMode",
    "OpenMode",
    "HDF5Serializer",
    "SimulatorInfo",
]
