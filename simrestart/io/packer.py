"""Byte packers turning simulator state into contiguous bytes and back.

The checkpoint serializer only depends on the :class:`BytePacker`
interface. :class:`TorchPacker` is the packer shipped with the package and
handles everything ``torch.save`` can pickle: tensors, numpy arrays,
nested dicts/lists/tuples, scalars and strings.
"""

import io
from abc import ABC, abstractmethod
from typing import Any

import torch

from ..errors import EncodingError


class BytePacker(ABC):
    """Encode values to bytes and decode them back."""

    @abstractmethod
    def pack(self, *values: Any) -> bytes:
        """Pack one or more values into a single byte buffer.

        Raises:
            EncodingError: If any value cannot be encoded
        """

    @abstractmethod
    def unpack(self, buffer: bytes) -> Any:
        """Unpack a buffer produced by :meth:`pack`.

        A buffer packed from a single value unpacks to that value, a buffer
        packed from several values unpacks to a tuple in the same order.

        Raises:
            EncodingError: If the buffer cannot be decoded
        """


class TorchPacker(BytePacker):
    """Packer based on ``torch.save``/``torch.load`` over in-memory buffers."""

    def pack(self, *values: Any) -> bytes:
        if not values:
            raise EncodingError("Nothing to pack: at least one value is required")

        payload = values[0] if len(values) == 1 else tuple(values)
        stream = io.BytesIO()
        try:
            torch.save(payload, stream)
        except Exception as e:
            raise EncodingError(
                f"Failed to pack value of type {type(payload).__name__}: {e}"
            ) from e
        return stream.getvalue()

    def unpack(self, buffer: bytes) -> Any:
        if not buffer:
            raise EncodingError("Cannot unpack an empty buffer")

        try:
            return torch.load(  # nosec B614 - buffers come from our own files
                io.BytesIO(buffer), map_location="cpu", weights_only=False
            )
        except Exception as e:
            raise EncodingError(
                f"Failed to unpack buffer of {len(buffer)} bytes: {e}"
            ) from e


def get_packer(name: str = "torch") -> BytePacker:
    """Create a packer by name.

    Args:
        name: Packer name (currently only "torch")

    Returns:
        Packer instance

    Raises:
        ValueError: If the name is unknown
    """
    if name.lower() == "torch":
        return TorchPacker()
    raise ValueError(f"Unknown packer: {name}. Expected one of ['torch']")
