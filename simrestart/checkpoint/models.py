"""Data structures for checkpoint writes, reads and headers.

This module defines the fixed addresses of a restart file, the tagged
outcomes returned by the serializer and the simulator header record.
"""

import sys
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple

from ..io.hdf5_file import DataSetMode


# Report-step datasets live under this group, named by decimal step number
REPORT_STEP_GROUP = "/report_step"
HEADER_GROUP = "/"
HEADER_DATASET = "simulator_info"

# Pack size recorded after a failed pack: the largest representable size
INVALID_PACK_SIZE = sys.maxsize
NO_REPORT_STEP = -1


class OutcomeKind(str, Enum):
    """Result tag of a write or read."""

    OK = "ok"
    ENCODING_FAILURE = "encoding_failure"
    IO_FAILURE = "io_failure"


@dataclass(frozen=True)
class WriteOutcome:
    """Result of one checkpoint write.

    ``nbytes`` is the packed buffer size for a successful write and
    ``INVALID_PACK_SIZE`` for an encoding failure. For an I/O failure the
    buffer was packed, so ``nbytes`` is its real size.
    """

    kind: OutcomeKind
    group: str
    dataset: str
    mode: DataSetMode
    nbytes: int
    error: Optional[BaseException] = None

    @classmethod
    def ok(
        cls, group: str, dataset: str, mode: DataSetMode, nbytes: int
    ) -> "WriteOutcome":
        return cls(OutcomeKind.OK, group, dataset, mode, nbytes)

    @property
    def succeeded(self) -> bool:
        return self.kind == OutcomeKind.OK

    def raise_for_failure(self) -> "WriteOutcome":
        """Re-raise the stored error, if any; otherwise return self."""
        if self.error is not None:
            raise self.error
        return self


@dataclass(frozen=True)
class ReadOutcome:
    """Result of one checkpoint read; ``value`` is set only on success."""

    kind: OutcomeKind
    group: str
    dataset: str
    mode: DataSetMode
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.kind == OutcomeKind.OK

    def unwrap(self) -> Any:
        """Return the value, or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value


@dataclass(frozen=True)
class ReportStepEntry:
    """A dataset name under the report-step group and its parsed step."""

    name: str
    step: int
    parsed: bool  # False when the name is not a clean decimal integer


@dataclass
class SimulatorInfo:
    """Provenance header stamped once on every restart file."""

    simulator_name: str
    module_version: str
    time_stamp: str
    case_name: str
    params: str
    num_procs: int

    def to_fields(self) -> Tuple[str, str, str, str, str, int]:
        """Header fields in stored order."""
        return (
            self.simulator_name,
            self.module_version,
            self.time_stamp,
            self.case_name,
            self.params,
            int(self.num_procs),
        )

    @classmethod
    def from_fields(cls, fields: Any) -> "SimulatorInfo":
        """Create from the stored six-tuple.

        Raises:
            ValueError: If the record does not hold six fields
        """
        if not isinstance(fields, (tuple, list)) or len(fields) != 6:
            raise ValueError(
                f"Header corrupted: expected 6 fields, got {fields!r}"
            )
        name, version, stamp, case_name, params, num_procs = fields
        return cls(
            simulator_name=str(name),
            module_version=str(version),
            time_stamp=str(stamp),
            case_name=str(case_name),
            params=str(params),
            num_procs=int(num_procs),
        )

    @classmethod
    def current(
        cls,
        case_name: str,
        params: str,
        num_procs: int,
        simulator_name: str = "simrestart",
        module_version: Optional[str] = None,
    ) -> "SimulatorInfo":
        """Header for a file written now by this package's version."""
        if module_version is None:
            from .. import __version__

            module_version = __version__

        return cls(
            simulator_name=simulator_name,
            module_version=module_version,
            time_stamp=datetime.now().isoformat(timespec="seconds"),
            case_name=case_name,
            params=params,
            num_procs=num_procs,
        )
