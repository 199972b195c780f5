"""Tests for the checkpoint serializer."""

import numpy as np
import pytest
import torch

from simrestart.checkpoint import (
    HEADER_DATASET,
    HEADER_GROUP,
    INVALID_PACK_SIZE,
    HDF5Serializer,
    OutcomeKind,
    SimulatorInfo,
)
from simrestart.errors import BackendIOError, EncodingError
from simrestart.io import DataSetMode
from simrestart.parallel import SerialProcessGroup


class TestSerializerRoundTrip:
    """Tests for write/read round trips."""

    def test_state_round_trip(self, serializer, simulator_state):
        """Test that simulator state reads back bit-for-bit."""
        serializer.write(simulator_state, "/report_step", "3")
        restored = serializer.read("/report_step", "3")

        assert set(restored) == set(simulator_state)
        for key in ("pressure", "saturation", "cell_ids"):
            assert torch.equal(restored[key], simulator_state[key])
            assert restored[key].dtype == simulator_state[key].dtype
        assert restored["time"] == 86400.0
        assert restored["well_names"] == ["INJ-1", "PROD-1"]
        assert restored["converged"] is True

    def test_root_only_round_trip(self, serializer):
        """Test a round trip through root-only distribution."""
        grid = np.arange(12, dtype=np.float64).reshape(3, 4)
        serializer.write(grid, "/grid", "geometry", DataSetMode.ROOT_ONLY)

        restored = serializer.read("/grid", "geometry", DataSetMode.ROOT_ONLY)
        assert np.array_equal(restored, grid)

    def test_mode_accepts_strings(self, serializer):
        serializer.write([1, 2, 3], "/misc", "list", "root_only")
        assert serializer.read("/misc", "list", "root_only") == [1, 2, 3]

    def test_round_trip_after_reopen(self, restart_file, serial_comm, simulator_state):
        """Test reading a file written in an earlier session."""
        with HDF5Serializer(restart_file, "create", serial_comm) as ser:
            ser.write(simulator_state, "/report_step", "5")

        with HDF5Serializer(restart_file, "read", serial_comm) as ser:
            restored = ser.read("/report_step", "5")
        assert torch.equal(restored["pressure"], simulator_state["pressure"])

    def test_process_split_round_trip_per_rank(self, restart_file):
        """Test that each rank gets back exactly its own state."""
        comms = [SerialProcessGroup(rank=r, size=3) for r in range(3)]
        sers = [HDF5Serializer(restart_file, "create", c) for c in comms]
        states = [{"rank": r, "values": torch.full((4,), float(r))} for r in range(3)]

        for ser, state in zip(sers, states):
            ser.write_report_step(state, 7)

        for ser, state in zip(sers, states):
            restored = ser.read_report_step(7)
            assert restored["rank"] == state["rank"]
            assert torch.equal(restored["values"], state["values"])
        assert sers[0].report_step_num_procs(7) == 3

    def test_overwrite_same_address(self, serializer):
        serializer.write({"v": 1}, "/report_step", "1")
        serializer.write({"v": 2}, "/report_step", "1")
        assert serializer.read("/report_step", "1") == {"v": 2}


class TestSerializerReadInto:
    """Tests for reading into existing objects."""

    def test_read_into_module(self, serializer):
        """Test loading a module from a stored state dict."""
        source = torch.nn.Linear(4, 2)
        target = torch.nn.Linear(4, 2)
        serializer.write(source.state_dict(), "/model", "linear")

        result = serializer.read_into(target, "/model", "linear")

        assert result is target
        assert torch.equal(target.weight, source.weight)
        assert torch.equal(target.bias, source.bias)

    def test_read_into_dict_updates_in_place(self, serializer):
        serializer.write({"a": 1, "b": 2}, "/misc", "d")
        state = {"a": 0, "c": 3}

        serializer.read_into(state, "/misc", "d")
        assert state == {"a": 1, "b": 2, "c": 3}

    def test_read_into_unsupported_type(self, serializer):
        serializer.write([1, 2], "/misc", "l")
        with pytest.raises(TypeError, match="Cannot read into list"):
            serializer.read_into([0, 0], "/misc", "l")


class TestPackSizeSentinel:
    """Tests for the pack size bookkeeping."""

    def test_sentinel_is_exact_size_after_write(
        self, restart_file, serial_comm, recording_packer, simulator_state
    ):
        """Test that the sentinel equals the byte length last packed."""
        ser = HDF5Serializer(restart_file, "create", serial_comm, packer=recording_packer)

        outcome = ser.write(simulator_state, "/report_step", "0")

        assert ser.pack_size == len(recording_packer.last_buffer)
        assert outcome.nbytes == ser.pack_size
        assert outcome.succeeded
        assert ser.pack_size_valid

    def test_sentinel_invalid_after_failed_pack(self, serializer):
        """Test that a failed pack overrides an earlier valid size."""
        serializer.write({"ok": 1}, "/report_step", "0")
        assert serializer.pack_size_valid

        with pytest.raises(EncodingError):
            serializer.write({"callback": lambda x: x}, "/report_step", "1")

        assert serializer.pack_size == INVALID_PACK_SIZE
        assert not serializer.pack_size_valid

    def test_sentinel_recovers_after_next_success(self, serializer):
        with pytest.raises(EncodingError):
            serializer.write({"callback": lambda x: x}, "/report_step", "1")

        outcome = serializer.write({"ok": 1}, "/report_step", "2")
        assert serializer.pack_size == outcome.nbytes
        assert serializer.pack_size != INVALID_PACK_SIZE

    def test_header_pack_failure_sets_sentinel(self, serializer):
        """Test that the header follows the same discipline."""
        with pytest.raises(EncodingError):
            serializer.write_header("sim", "1.0", "now", "case", lambda: None, 1)

        assert serializer.pack_size == INVALID_PACK_SIZE
        assert not serializer.has_header()


class TestFailureIsolation:
    """Tests that failed writes leave nothing behind."""

    def test_failed_pack_writes_nothing(self, restart_file, serial_comm, failing_packer):
        """Test that an encoding failure never reaches the file."""
        ser = HDF5Serializer(restart_file, "create", serial_comm, packer=failing_packer)

        with pytest.raises(EncodingError, match="poisoned"):
            ser.write({"poison": True}, "/report_step", "1")

        assert ser.pack_size == INVALID_PACK_SIZE
        assert ser.report_steps() == []

        ser.write({"fine": True}, "/report_step", "2")
        assert ser.report_steps() == [2]
        assert ser.read("/report_step", "2") == {"fine": True}

    def test_failed_pack_keeps_previous_dataset(self, serializer):
        """Test that a failed overwrite leaves the earlier data intact."""
        serializer.write({"v": 1}, "/report_step", "1")

        with pytest.raises(EncodingError):
            serializer.write({"callback": lambda x: x}, "/report_step", "1")

        assert serializer.read("/report_step", "1") == {"v": 1}

    def test_io_failure_propagates(self, restart_file, serial_comm):
        """Test that backend failures surface as BackendIOError."""
        HDF5Serializer(restart_file, "create", serial_comm)
        reader = HDF5Serializer(restart_file, "read", serial_comm)

        with pytest.raises(BackendIOError):
            reader.write({"v": 1}, "/report_step", "1")
        assert reader.pack_size_valid

    def test_read_missing_dataset_propagates(self, serializer):
        with pytest.raises(BackendIOError):
            serializer.read("/report_step", "99")

    def test_read_corrupt_buffer_is_encoding_error(self, serializer):
        """Test that an undecodable stored buffer is an encoding failure."""
        serializer._h5file.write("/report_step", "1", b"garbage")

        with pytest.raises(EncodingError):
            serializer.read("/report_step", "1")


class TestTaggedOutcomes:
    """Tests for try_write/try_read result types."""

    def test_try_write_ok(self, serializer):
        outcome = serializer.try_write({"v": 1}, "/report_step", "1")

        assert outcome.kind == OutcomeKind.OK
        assert outcome.error is None
        assert outcome.raise_for_failure() is outcome

    def test_try_write_encoding_failure(self, serializer):
        """Test that an encoding failure is returned, not raised."""
        outcome = serializer.try_write({"callback": lambda x: x}, "/report_step", "1")

        assert outcome.kind == OutcomeKind.ENCODING_FAILURE
        assert outcome.nbytes == INVALID_PACK_SIZE
        assert isinstance(outcome.error, EncodingError)
        assert serializer.pack_size == INVALID_PACK_SIZE
        assert serializer.report_steps() == []
        with pytest.raises(EncodingError):
            outcome.raise_for_failure()

    def test_try_write_io_failure(self, restart_file, serial_comm):
        """Test that an I/O failure is tagged apart from encoding failures."""
        HDF5Serializer(restart_file, "create", serial_comm)
        reader = HDF5Serializer(restart_file, "read", serial_comm)

        outcome = reader.try_write({"v": 1}, "/report_step", "1")

        assert outcome.kind == OutcomeKind.IO_FAILURE
        assert isinstance(outcome.error, BackendIOError)
        assert outcome.nbytes == reader.pack_size
        assert outcome.nbytes != INVALID_PACK_SIZE

    def test_try_read_outcomes(self, serializer):
        """Test ok, I/O and encoding read outcomes."""
        serializer.write({"v": 1}, "/report_step", "1")
        serializer._h5file.write("/report_step", "2", b"garbage")

        assert serializer.try_read("/report_step", "1").unwrap() == {"v": 1}
        assert serializer.try_read("/report_step", "3").kind == OutcomeKind.IO_FAILURE
        assert (
            serializer.try_read("/report_step", "2").kind
            == OutcomeKind.ENCODING_FAILURE
        )


class TestHeader:
    """Tests for the provenance header."""

    def test_header_generic_read(self, serializer):
        """Test that a generic read reconstructs all six fields."""
        serializer.write_header(
            "flow", "2024.10", "2024-10-01T12:00:00", "SPE1", "dt=1\ntol=1e-6", 8
        )

        fields = serializer.read(HEADER_GROUP, HEADER_DATASET, DataSetMode.ROOT_ONLY)

        assert fields == (
            "flow",
            "2024.10",
            "2024-10-01T12:00:00",
            "SPE1",
            "dt=1\ntol=1e-6",
            8,
        )
        assert isinstance(fields[5], int)

    def test_read_header(self, serializer):
        info = SimulatorInfo.current("SPE1", "dt=1", 4, simulator_name="flow")
        outcome = serializer.write_simulator_info(info)

        assert outcome.mode == DataSetMode.ROOT_ONLY
        assert serializer.read_header() == info

    def test_header_single_physical_write(self, restart_file):
        """Test that only the designated root writes the header."""
        root = HDF5Serializer(restart_file, "create", SerialProcessGroup(0, 2))
        other = HDF5Serializer(restart_file, "create", SerialProcessGroup(1, 2))

        other.write_header("flow", "1.0", "t", "case", "", 2)
        assert not root.has_header()

        root.write_header("flow", "1.0", "t", "case", "", 2)
        assert other.read_header().num_procs == 2

    def test_header_written_by_configured_root(self, restart_file):
        """Test a non-zero designated root."""
        rank0 = HDF5Serializer(restart_file, "create", SerialProcessGroup(0, 2), root=1)
        rank1 = HDF5Serializer(restart_file, "create", SerialProcessGroup(1, 2), root=1)

        assert restart_file.exists()

        rank0.write_header("flow", "1.0", "t", "case", "", 2)
        assert not rank1.has_header()

        rank1.write_header("flow", "1.0", "t", "case", "", 2)
        assert rank0.read_header().case_name == "case"

    def test_header_is_root_only_dataset(self, serializer):
        """Test that the header cannot be read as process-split."""
        serializer.write_header("flow", "1.0", "t", "case", "", 1)
        with pytest.raises(BackendIOError):
            serializer.read(HEADER_GROUP, HEADER_DATASET)
