"""Restart helpers: choose the report step to resume from.

This module resolves a ``resume_from`` setting against the report steps
present in a restart file and checks the file's header against the
current job.
"""

from typing import Optional, Union

from loguru import logger

from .models import NO_REPORT_STEP, SimulatorInfo
from .serializer import HDF5Serializer


def resolve_restart_step(
    serializer: HDF5Serializer,
    resume_from: Optional[Union[str, int]],
) -> Optional[int]:
    """Resolve a report step from a config value.

    Args:
        serializer: Serializer opened on the restart file
        resume_from: None/blank (no restart), "last", or a step number

    Returns:
        Report step to restart from, or None if no restart is requested

    Raises:
        LookupError: If the requested step is not in the file
        ValueError: If resume_from is not "last" or a step number
    """
    if resume_from is None:
        return None

    if isinstance(resume_from, str):
        resume_from = resume_from.strip()
        if not resume_from:
            return None

        if resume_from.lower() == "last":
            step = serializer.last_report_step()
            if step == NO_REPORT_STEP:
                raise LookupError(f"No report steps found in {serializer.filename}")
            logger.info(f"Restarting from last report step {step}")
            return step

        if not resume_from.isdigit():
            raise ValueError(
                f"resume_from must be 'last' or a report step number. Got: {resume_from}"
            )

    step = int(resume_from)
    available = serializer.report_steps()
    if step not in available:
        raise LookupError(
            f"Report step {step} not found in {serializer.filename} "
            f"(available: {available})"
        )
    logger.info(f"Restarting from report step {step}")
    return step


def _major(version: str) -> str:
    return version.split(".", 1)[0]


def check_header_compatibility(
    info: SimulatorInfo,
    num_procs: int,
    module_version: Optional[str] = None,
) -> bool:
    """Compare a restart file's header with the current job.

    Args:
        info: Header read from the restart file
        num_procs: Process count of the current job
        module_version: Version of the current simulator, if known

    Returns:
        True if process-split data in the file can be read back by this job
    """
    if module_version is not None and _major(module_version) != _major(
        info.module_version
    ):
        logger.warning(
            f"Restart file written by {info.simulator_name} {info.module_version}, "
            f"running {module_version}"
        )

    if info.num_procs != num_procs:
        logger.warning(
            f"Restart file written by {info.num_procs} processes, "
            f"job has {num_procs}; per-process data cannot be restored"
        )
        return False
    return True
