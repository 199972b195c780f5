"""Process groups for parallel-aware checkpoint writes."""

from .process_group import (
    ProcessGroup,
    SerialProcessGroup,
    TorchProcessGroup,
    get_process_group,
)

__all__ = [
    "ProcessGroup",
    "SerialProcessGroup",
    "TorchProcessGroup",
    "get_process_group",
]
