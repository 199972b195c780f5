"""Checkpoint/restart serialization for simulator state.

This module provides the serializer that writes packed state, the
provenance header and report steps to an HDF5 restart file, and reads
them back on restart.
"""

from .models import (
    HEADER_DATASET,
    HEADER_GROUP,
    INVALID_PACK_SIZE,
    NO_REPORT_STEP,
    REPORT_STEP_GROUP,
    OutcomeKind,
    ReadOutcome,
    ReportStepEntry,
    SimulatorInfo,
    WriteOutcome,
)
from .report_steps import parse_entry, parse_report_step
from .serializer import HDF5Serializer
from .restart import check_header_compatibility, resolve_restart_step

__all__ = [
    "HEADER_DATASET",
    "HEADER_GROUP",
    "INVALID_PACK_SIZE",
    "NO_REPORT_STEP",
    "REPORT_STEP_GROUP",
    "OutcomeKind",
    "ReadOutcome",
    "ReportStepEntry",
    "SimulatorInfo",
    "WriteOutcome",
    "parse_entry",
    "parse_report_step",
    "HDF5Serializer",
    "check_header_compatibility",
    "resolve_restart_step",
]
