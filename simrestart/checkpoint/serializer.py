"""Checkpoint serializer combining a byte packer with the HDF5 backend.

A write packs the state completely before anything reaches the file, and
a read fetches the complete buffer before unpacking. The size of the last
packed buffer is kept in :attr:`HDF5Serializer.pack_size`; a failed pack
sets it to ``INVALID_PACK_SIZE`` so it can never be mistaken for a small
successful write.
"""

from pathlib import Path
from typing import Any, List, Optional, Union

from loguru import logger

from ..errors import SimRestartError
from ..io.hdf5_file import DataSetMode, HDF5File, OpenMode
from ..io.packer import BytePacker, TorchPacker
from ..parallel.process_group import ProcessGroup
from . import report_steps
from .models import (
    HEADER_DATASET,
    HEADER_GROUP,
    INVALID_PACK_SIZE,
    REPORT_STEP_GROUP,
    OutcomeKind,
    ReadOutcome,
    ReportStepEntry,
    SimulatorInfo,
    WriteOutcome,
)


class HDF5Serializer:
    """Serialize simulator state to, and restore it from, a restart file."""

    def __init__(
        self,
        filename: Union[str, Path],
        mode: Union[OpenMode, str],
        comm: ProcessGroup,
        packer: Optional[BytePacker] = None,
        root: int = 0,
    ):
        """Open a restart file session.

        Args:
            filename: Path to the restart file
            mode: Open mode (create, append or read)
            comm: Process group of the cooperating processes
            packer: Byte packer, defaults to TorchPacker
            root: Rank performing root-only writes such as the header
        """
        self.packer = packer if packer is not None else TorchPacker()
        self.comm = comm
        self._h5file = HDF5File(filename, mode, comm, root=root)
        self._pack_size = 0

    @property
    def filename(self) -> Path:
        return self._h5file.filename

    @property
    def root(self) -> int:
        return self._h5file.root

    @property
    def pack_size(self) -> int:
        """Byte length of the last packed buffer, or ``INVALID_PACK_SIZE``."""
        return self._pack_size

    @property
    def pack_size_valid(self) -> bool:
        return self._pack_size != INVALID_PACK_SIZE

    def _pack(self, *values: Any) -> bytes:
        try:
            buffer = self.packer.pack(*values)
        except Exception:
            self._pack_size = INVALID_PACK_SIZE
            raise
        self._pack_size = len(buffer)
        return buffer

    def write(
        self,
        data: Any,
        group: str,
        dset: str,
        mode: Union[DataSetMode, str] = DataSetMode.PROCESS_SPLIT,
    ) -> WriteOutcome:
        """Serialize and write data to the restart file.

        Args:
            data: State to write
            group: Group path in the file
            dset: Dataset name within the group
            mode: Write distribution across the process group

        Returns:
            Outcome carrying the number of bytes written

        Raises:
            EncodingError: If the state cannot be packed (nothing is written)
            BackendIOError: If the file backend fails
        """
        mode = DataSetMode(mode)
        buffer = self._pack(data)
        self._h5file.write(group, dset, buffer, mode)

        logger.debug(
            f"Wrote {len(buffer)} bytes to {group}:{dset} ({mode.value}, "
            f"rank {self.comm.rank})"
        )
        return WriteOutcome.ok(group, dset, mode, len(buffer))

    def try_write(
        self,
        data: Any,
        group: str,
        dset: str,
        mode: Union[DataSetMode, str] = DataSetMode.PROCESS_SPLIT,
    ) -> WriteOutcome:
        """Like :meth:`write`, but return failures as a tagged outcome."""
        mode = DataSetMode(mode)
        try:
            buffer = self._pack(data)
        except Exception as e:
            logger.warning(f"Packing {group}:{dset} failed: {e}")
            return WriteOutcome(
                OutcomeKind.ENCODING_FAILURE, group, dset, mode, INVALID_PACK_SIZE, e
            )

        try:
            self._h5file.write(group, dset, buffer, mode)
        except SimRestartError as e:
            logger.warning(f"Writing {group}:{dset} failed: {e}")
            return WriteOutcome(
                OutcomeKind.IO_FAILURE, group, dset, mode, len(buffer), e
            )
        return WriteOutcome.ok(group, dset, mode, len(buffer))

    def write_header(
        self,
        simulator_name: str,
        module_version: str,
        time_stamp: str,
        case_name: str,
        params: str,
        num_procs: int,
    ) -> WriteOutcome:
        """Write the provenance header to the file.

        Only the root rank writes; every rank must call this so the
        collective success check completes.

        Args:
            simulator_name: Name of simulator used
            module_version: Version of simulator used
            time_stamp: Build time-stamp for simulator used
            case_name: Name of case file is associated with
            params: List of parameter values
            num_procs: Number of processes used
        """
        buffer = self._pack(
            simulator_name, module_version, time_stamp, case_name, params, num_procs
        )
        self._h5file.write(HEADER_GROUP, HEADER_DATASET, buffer, DataSetMode.ROOT_ONLY)

        if self.comm.is_root(self.root):
            logger.info(
                f"Wrote header to {self.filename}: {simulator_name} "
                f"{module_version} ({time_stamp}), case={case_name}, "
                f"num_procs={num_procs}"
            )
        return WriteOutcome.ok(
            HEADER_GROUP, HEADER_DATASET, DataSetMode.ROOT_ONLY, len(buffer)
        )

    def write_simulator_info(self, info: SimulatorInfo) -> WriteOutcome:
        return self.write_header(*info.to_fields())

    def read(
        self,
        group: str,
        dset: str,
        mode: Union[DataSetMode, str] = DataSetMode.PROCESS_SPLIT,
    ) -> Any:
        """Read data and deserialize it from the restart file.

        Raises:
            BackendIOError: If the dataset is missing or has another layout
            EncodingError: If the stored buffer cannot be unpacked
        """
        mode = DataSetMode(mode)
        buffer = self._h5file.read(group, dset, mode)
        logger.debug(
            f"Read {len(buffer)} bytes from {group}:{dset} ({mode.value}, "
            f"rank {self.comm.rank})"
        )
        return self.packer.unpack(buffer)

    def try_read(
        self,
        group: str,
        dset: str,
        mode: Union[DataSetMode, str] = DataSetMode.PROCESS_SPLIT,
    ) -> ReadOutcome:
        """Like :meth:`read`, but return failures as a tagged outcome."""
        mode = DataSetMode(mode)
        try:
            buffer = self._h5file.read(group, dset, mode)
        except SimRestartError as e:
            return ReadOutcome(OutcomeKind.IO_FAILURE, group, dset, mode, error=e)

        try:
            value = self.packer.unpack(buffer)
        except Exception as e:
            return ReadOutcome(OutcomeKind.ENCODING_FAILURE, group, dset, mode, error=e)
        return ReadOutcome(OutcomeKind.OK, group, dset, mode, value=value)

    def read_into(
        self,
        state: Any,
        group: str,
        dset: str,
        mode: Union[DataSetMode, str] = DataSetMode.PROCESS_SPLIT,
    ) -> Any:
        """Read data into an existing destination.

        Objects with ``load_state_dict`` (modules, optimizers) are loaded
        from the stored state dict, dicts are updated in place.

        Returns:
            The destination object

        Raises:
            TypeError: If the destination cannot be loaded in place
        """
        if not (hasattr(state, "load_state_dict") or isinstance(state, dict)):
            raise TypeError(
                f"Cannot read into {type(state).__name__}: expected a dict or "
                "an object with load_state_dict()"
            )

        value = self.read(group, dset, mode)
        if hasattr(state, "load_state_dict"):
            state.load_state_dict(value)
        else:
            state.update(value)
        return state

    def read_header(self) -> SimulatorInfo:
        """Read the provenance header written by :meth:`write_header`."""
        fields = self.read(HEADER_GROUP, HEADER_DATASET, DataSetMode.ROOT_ONLY)
        return SimulatorInfo.from_fields(fields)

    def has_header(self) -> bool:
        return self._h5file.exists(HEADER_GROUP, HEADER_DATASET)

    def _report_step_names(self) -> List[str]:
        return list(self._h5file.list(REPORT_STEP_GROUP))

    def last_report_step(self) -> int:
        """Returns the last report step stored in file, or -1 if none."""
        return report_steps.last_step(self._report_step_names())

    def report_steps(self) -> List[int]:
        """Returns the report steps stored in the file, ascending."""
        return report_steps.sorted_steps(self._report_step_names())

    def report_step_entries(self) -> List[ReportStepEntry]:
        """Report-step names with their parsed step and a clean-parse flag."""
        entries = [report_steps.parse_entry(n) for n in self._report_step_names()]
        for entry in entries:
            if not entry.parsed:
                logger.warning(
                    f"Report step name '{entry.name}' in {self.filename} is not "
                    f"a decimal integer, treated as step {entry.step}"
                )
        return sorted(entries, key=lambda e: (e.step, e.name))

    def write_report_step(
        self,
        data: Any,
        step: int,
        mode: Union[DataSetMode, str] = DataSetMode.PROCESS_SPLIT,
    ) -> WriteOutcome:
        return self.write(data, REPORT_STEP_GROUP, _step_name(step), mode)

    def read_report_step(
        self,
        step: int,
        mode: Union[DataSetMode, str] = DataSetMode.PROCESS_SPLIT,
    ) -> Any:
        return self.read(REPORT_STEP_GROUP, _step_name(step), mode)

    def report_step_num_procs(self, step: int) -> int:
        """Process count that wrote a report step."""
        return self._h5file.num_procs(REPORT_STEP_GROUP, _step_name(step))

    def close(self) -> None:
        self._h5file.close()

    def __enter__(self) -> "HDF5Serializer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _step_name(step: int) -> str:
    if int(step) < 0:
        raise ValueError(f"Report step must be non-negative, got {step}")
    return str(int(step))
