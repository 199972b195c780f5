"""Process groups describing the set of cooperating processes.

The checkpoint layer only needs the calling process's rank, the number of
processes, a barrier and a collective success flag. The serial group covers
single-process runs and lets tests drive one rank of a larger job at a time;
the torch group wraps an already initialized ``torch.distributed`` process group.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import torch
import torch.distributed as dist
from loguru import logger


class ProcessGroup(ABC):
    """Rank/size/barrier view of a set of cooperating processes."""

    @property
    @abstractmethod
    def rank(self) -> int:
        """Rank of the calling process."""

    @property
    @abstractmethod
    def size(self) -> int:
        """Number of cooperating processes."""

    @abstractmethod
    def barrier(self) -> None:
        """Block until every process in the group has reached the barrier."""

    @abstractmethod
    def all_ok(self, ok: bool) -> bool:
        """Collective AND of a per-rank success flag.

        Every rank must call this; it also acts as a barrier.
        """

    def is_root(self, root: int = 0) -> bool:
        """Check whether the calling process is the designated root."""
        return self.rank == root

    def validate_root(self, root: int) -> int:
        """Check that ``root`` names a member of this group.

        Raises:
            ValueError: If root is outside ``[0, size)``
        """
        if not 0 <= root < self.size:
            raise ValueError(
                f"Root rank {root} is outside the process group (size={self.size})"
            )
        return root

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rank={self.rank}, size={self.size})"


class SerialProcessGroup(ProcessGroup):
    """Process group for a single process, or for one rank driven on its own."""

    def __init__(self, rank: int = 0, size: int = 1):
        if size < 1:
            raise ValueError(f"size must be positive, got {size}")
        if not 0 <= rank < size:
            raise ValueError(f"rank {rank} is outside [0, {size})")
        self._rank = rank
        self._size = size

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._size

    def barrier(self) -> None:
        pass

    def all_ok(self, ok: bool) -> bool:
        return ok


class TorchProcessGroup(ProcessGroup):
    """Process group backed by ``torch.distributed``."""

    def __init__(self, group: Optional[Any] = None):
        """Wrap an initialized torch.distributed group.

        Args:
            group: Process group handle, or None for the default group

        Raises:
            RuntimeError: If torch.distributed is not initialized
        """
        if not (dist.is_available() and dist.is_initialized()):
            raise RuntimeError(
                "torch.distributed is not initialized; call "
                "torch.distributed.init_process_group() first"
            )
        self._group = group

    @property
    def rank(self) -> int:
        return dist.get_rank(self._group)

    @property
    def size(self) -> int:
        return dist.get_world_size(self._group)

    def barrier(self) -> None:
        dist.barrier(group=self._group)

    def all_ok(self, ok: bool) -> bool:
        flag = torch.tensor([1 if ok else 0], dtype=torch.int32)
        dist.all_reduce(flag, op=dist.ReduceOp.MIN, group=self._group)
        return bool(flag.item())


def get_process_group(backend: str = "auto") -> ProcessGroup:
    """Create the process group for the current job.

    Args:
        backend: "auto" (torch when initialized, serial otherwise),
            "serial" or "torch"

    Returns:
        Process group instance

    Raises:
        ValueError: If backend is unknown
        RuntimeError: If "torch" is requested but not initialized
    """
    backend = backend.lower()
    if backend == "serial":
        return SerialProcessGroup()
    if backend == "torch":
        return TorchProcessGroup()
    if backend == "auto":
        if dist.is_available() and dist.is_initialized():
            comm: ProcessGroup = TorchProcessGroup()
        else:
            comm = SerialProcessGroup()
        logger.debug(f"Selected process group: {comm}")
        return comm
    raise ValueError(
        f"Unknown process group backend: {backend}. "
        "Expected one of ['auto', 'serial', 'torch']"
    )
