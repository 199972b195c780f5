"""Pytest fixtures for simrestart tests."""

import pytest
import torch
from pathlib import Path

# Add parent directory to path for imports
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from simrestart.errors import EncodingError  # noqa: E402
from simrestart.io.packer import TorchPacker  # noqa: E402


class RecordingPacker(TorchPacker):
    """TorchPacker that remembers the last buffer it produced."""

    def __init__(self):
        self.last_buffer = None

    def pack(self, *values):
        buffer = super().pack(*values)
        self.last_buffer = buffer
        return buffer


class FailingPacker(TorchPacker):
    """TorchPacker that refuses to pack dicts containing the key "poison"."""

    def __init__(self):
        self.calls = 0

    def pack(self, *values):
        self.calls += 1
        for value in values:
            if isinstance(value, dict) and "poison" in value:
                raise EncodingError("poisoned state")
        return super().pack(*values)


@pytest.fixture
def restart_file(tmp_path):
    """Path of a restart file inside a temporary directory."""
    return tmp_path / "restart" / "case.h5"


@pytest.fixture
def serial_comm():
    """Single-process group."""
    from simrestart.parallel import SerialProcessGroup

    return SerialProcessGroup()


@pytest.fixture
def serializer(restart_file, serial_comm):
    """Serializer on a freshly created restart file."""
    from simrestart.checkpoint import HDF5Serializer

    with HDF5Serializer(restart_file, "create", serial_comm) as ser:
        yield ser


@pytest.fixture
def recording_packer():
    return RecordingPacker()


@pytest.fixture
def failing_packer():
    return FailingPacker()


@pytest.fixture
def simulator_state():
    """Representative per-process simulator state."""
    torch.manual_seed(0)
    return {
        "pressure": torch.rand(4, 5, dtype=torch.float64),
        "saturation": torch.rand(20),
        "cell_ids": torch.arange(20, dtype=torch.int64),
        "time": 86400.0,
        "report_step": 3,
        "well_names": ["INJ-1", "PROD-1"],
        "converged": True,
    }
