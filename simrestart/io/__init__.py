"""Byte packing and HDF5 storage of checkpoint buffers."""

from .hdf5_file import DataSetMode, HDF5File, OpenMode
from .packer import BytePacker, TorchPacker, get_packer

__all__ = [
    "BytePacker",
    "TorchPacker",
    "get_packer",
    "DataSetMode",
    "HDF5File",
    "OpenMode",
]
