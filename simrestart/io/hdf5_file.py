"""HDF5 file backend for checkpoint buffers.

Buffers are stored as one-dimensional ``uint8`` datasets. A root-only
dataset is a single HDF5 dataset written by the designated root rank. A
process-split dataset is an HDF5 group holding one dataset per rank, named
by the decimal rank, with the writing process count stored in the
``num_procs`` attribute.

Plain HDF5 allows a single writer per file, so ranks take turns in rank
order for process-split writes. After every physical write all ranks agree
on its success, so a failure on one rank is raised on every rank. The file
is opened for the duration of each call only, so every completed call is on
disk.
"""

import os
import posixpath
import tempfile
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Set, Union

import h5py
import numpy as np
from loguru import logger

from ..errors import BackendIOError
from ..parallel.process_group import ProcessGroup


class OpenMode(str, Enum):
    """How a checkpoint file is opened for a session."""

    CREATE = "create"  # create new, truncating any existing file
    APPEND = "append"  # read/write an existing file
    READ = "read"  # read-only


class DataSetMode(str, Enum):
    """How a logical write maps onto the cooperating processes."""

    ROOT_ONLY = "root_only"
    PROCESS_SPLIT = "process_split"


_H5_ERRORS = (OSError, KeyError, ValueError, TypeError, RuntimeError)


def _group_path(group: str) -> str:
    return "/" + group.strip("/")


def _dataset_path(group: str, dataset: str) -> str:
    return posixpath.join(_group_path(group), dataset)


class HDF5File:
    """Hierarchical store of named byte buffers, aware of process ranks."""

    def __init__(
        self,
        filename: Union[str, Path],
        mode: Union[OpenMode, str],
        comm: ProcessGroup,
        root: int = 0,
    ):
        """Open a checkpoint file session.

        Args:
            filename: Path to the HDF5 file
            mode: Open mode (create, append or read)
            comm: Process group of the cooperating processes
            root: Rank performing root-only writes

        Raises:
            BackendIOError: If the file cannot be created, or does not exist
                in append/read mode
            ValueError: If root is not a member of comm
        """
        self.filename = Path(filename)
        self.mode = OpenMode(mode)
        self.comm = comm
        self.root = comm.validate_root(root)
        self._closed = False

        if self.mode == OpenMode.CREATE:
            self._collective(comm.is_root(self.root), "create", self._create_file)
        elif not self.filename.exists():
            raise BackendIOError(f"Checkpoint file not found: {self.filename}")

        logger.debug(
            f"Opened {self.filename} (mode={self.mode.value}, "
            f"rank={comm.rank}/{comm.size})"
        )

    def _create_file(self) -> None:
        """Create an empty file atomically using temp file + rename."""
        try:
            self.filename.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.filename.parent, suffix=".tmp")
        except OSError as e:
            raise BackendIOError(
                f"Failed to create checkpoint file {self.filename}: {e}"
            ) from e

        try:
            os.close(fd)
            with h5py.File(tmp_path, "w"):
                pass
            os.replace(tmp_path, self.filename)
        except _H5_ERRORS as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise BackendIOError(
                f"Failed to create checkpoint file {self.filename}: {e}"
            ) from e

    def _collective(
        self, is_writer: bool, action: str, step: Callable[[], None]
    ) -> None:
        """Run ``step`` on the writing rank, then agree on the outcome.

        Every rank reaches the agreement even when the writer fails, so the
        writer re-raises its own error and its peers raise BackendIOError.
        """
        ok = False
        try:
            if is_writer:
                step()
            ok = True
        finally:
            agreed = self.comm.all_ok(ok)

        if not agreed:
            raise BackendIOError(
                f"{self.filename}: {action} failed on another rank"
            )

    @contextmanager
    def _open(self, writable: bool, action: str) -> Iterator[h5py.File]:
        if self._closed:
            raise BackendIOError(f"Checkpoint file {self.filename} is closed")
        if writable and self.mode == OpenMode.READ:
            raise BackendIOError(
                f"Cannot {action} {self.filename}: file was opened read-only"
            )

        try:
            h5 = h5py.File(self.filename, "r+" if writable else "r")
        except _H5_ERRORS as e:
            raise BackendIOError(f"Failed to open {self.filename}: {e}") from e

        try:
            yield h5
        except _H5_ERRORS as e:
            raise BackendIOError(
                f"HDF5 {action} failed for {self.filename}: {e}"
            ) from e
        finally:
            h5.close()

    def write(
        self,
        group: str,
        dataset: str,
        buffer: bytes,
        mode: Union[DataSetMode, str] = DataSetMode.PROCESS_SPLIT,
    ) -> None:
        """Write a byte buffer to ``group/dataset``.

        An existing dataset at the same address is replaced.

        Raises:
            BackendIOError: If the write fails or the file is read-only
        """
        mode = DataSetMode(mode)
        data = np.frombuffer(buffer, dtype=np.uint8)

        def write_root() -> None:
            with self._open(writable=True, action="write") as h5:
                parent = h5.require_group(_group_path(group))
                if dataset in parent:
                    del parent[dataset]
                parent.create_dataset(dataset, data=data)

        def write_own_slice() -> None:
            with self._open(writable=True, action="write") as h5:
                self._write_slice(h5, group, dataset, data)

        address = _dataset_path(group, dataset)
        if mode == DataSetMode.ROOT_ONLY:
            self._collective(
                self.comm.is_root(self.root), f"write of {address}", write_root
            )
            return

        for turn in range(self.comm.size):
            self._collective(
                turn == self.comm.rank,
                f"write of {address} (rank {turn})",
                write_own_slice,
            )

    def _write_slice(
        self, h5: h5py.File, group: str, dataset: str, data: np.ndarray
    ) -> None:
        parent = h5.require_group(_group_path(group))
        rank = self.comm.rank

        # Rank 0 goes first and drops slices left by an earlier process count
        if rank == 0 and dataset in parent:
            del parent[dataset]

        node = parent.get(dataset)
        if node is None:
            node = parent.create_group(dataset)
        elif not isinstance(node, h5py.Group):
            raise BackendIOError(
                f"{_dataset_path(group, dataset)} holds a root-only dataset, "
                "cannot add a process-split slice"
            )

        name = str(rank)
        if name in node:
            del node[name]
        node.create_dataset(name, data=data)
        node.attrs["num_procs"] = self.comm.size

    def read(
        self,
        group: str,
        dataset: str,
        mode: Union[DataSetMode, str] = DataSetMode.PROCESS_SPLIT,
    ) -> bytes:
        """Read the byte buffer stored at ``group/dataset``.

        Raises:
            BackendIOError: If the address, or this rank's slice, does not
                exist, or the stored layout does not match ``mode``
        """
        mode = DataSetMode(mode)
        address = _dataset_path(group, dataset)

        with self._open(writable=False, action="read") as h5:
            node = h5.get(address)
            if node is None:
                raise BackendIOError(f"No dataset at {address} in {self.filename}")

            if mode == DataSetMode.ROOT_ONLY:
                if not isinstance(node, h5py.Dataset):
                    raise BackendIOError(
                        f"{address} was written process-split, not root-only"
                    )
                return node[()].tobytes()

            if not isinstance(node, h5py.Group):
                raise BackendIOError(
                    f"{address} was written root-only, not process-split"
                )
            rank_slice = node.get(str(self.comm.rank))
            if rank_slice is None:
                raise BackendIOError(
                    f"{address} has no slice for rank {self.comm.rank} "
                    f"(written by {node.attrs.get('num_procs', '?')} processes)"
                )
            return rank_slice[()].tobytes()

    def list(self, group: str) -> Set[str]:
        """Names of the entries under ``group``; empty if the group is absent."""
        with self._open(writable=False, action="list") as h5:
            node = h5.get(_group_path(group))
            if node is None:
                return set()
            if not isinstance(node, h5py.Group):
                raise BackendIOError(f"{_group_path(group)} is not a group")
            return set(node.keys())

    def exists(self, group: str, dataset: str) -> bool:
        with self._open(writable=False, action="lookup") as h5:
            return _dataset_path(group, dataset) in h5

    def num_procs(self, group: str, dataset: str) -> int:
        """Process count that wrote a process-split dataset (1 for root-only)."""
        address = _dataset_path(group, dataset)
        with self._open(writable=False, action="lookup") as h5:
            node = h5.get(address)
            if node is None:
                raise BackendIOError(f"No dataset at {address} in {self.filename}")
            if isinstance(node, h5py.Dataset):
                return 1
            return int(node.attrs.get("num_procs", len(node)))

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> "HDF5File":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
