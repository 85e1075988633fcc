"""Tests for the append-only HDF5 sample store."""

import h5py
import numpy as np
import pytest

from scanmc.posterior import LogPosterior, flat_prior
from scanmc.sampling.exceptions import StorageError
from scanmc.sampling.storage import (
    COMMITTED_ATTR,
    SampleStore,
    make_records,
    record_dtype,
)


def _records(n, d=2, start=0.0):
    points = start + np.arange(n * d, dtype=float).reshape(n, d)
    return make_records(points, log_posterior=-np.arange(n, dtype=float), group=1)


# ============================================================================
# Records
# ============================================================================


class TestRecords:
    def test_dtype_fields(self):
        dtype = record_dtype(3)
        assert dtype.names == ("point", "log_posterior", "weight", "group", "iteration")
        assert dtype["point"].shape == (3,)

    def test_make_records_broadcasts(self):
        records = make_records(np.zeros((4, 2)))
        assert np.all(np.isnan(records["log_posterior"]))
        assert np.all(records["weight"] == 1.0)
        assert records["iteration"].tolist() == [0, 1, 2, 3]

    def test_make_records_single_point(self):
        records = make_records(np.array([1.0, 2.0]), log_posterior=-1.0, iteration=7)
        assert records.shape == (1,)
        assert records["iteration"][0] == 7


# ============================================================================
# Streams
# ============================================================================


class TestStreams:
    def test_append_and_read(self, memory_store):
        assert memory_store.append("mcmc/main/chain_000", _records(5)) == 5
        assert memory_store.append("mcmc/main/chain_000", _records(3, start=100.0)) == 8

        records = memory_store.read("mcmc/main/chain_000")
        assert records.shape == (8,)
        assert records["point"][5, 0] == 100.0
        assert memory_store.rows("mcmc/main/chain_000") == 8

    def test_read_range(self, memory_store):
        memory_store.append("s", _records(10))
        part = memory_store.read("s", 2, 5)
        np.testing.assert_array_equal(part["log_posterior"], [-2.0, -3.0, -4.0])
        assert memory_store.read("s", 8, 100).shape == (2,)
        assert memory_store.read("s", 5, 5).shape == (0,)

    def test_empty_append(self, memory_store):
        memory_store.append("s", _records(2))
        assert memory_store.append("s", _records(0)) == 2

    def test_missing_stream(self, memory_store):
        assert memory_store.rows("nope") == 0
        assert not memory_store.has_stream("nope")
        with pytest.raises(StorageError, match="No such stream"):
            memory_store.read("nope")

    def test_dtype_mismatch(self, memory_store):
        memory_store.append("s", _records(2, d=2))
        with pytest.raises(StorageError, match="does not match"):
            memory_store.append("s", _records(2, d=3))

    def test_streams_listing(self, memory_store):
        for name in ("mcmc/main/chain_001", "mcmc/main/chain_000", "mcmc/prerun/chain_000"):
            memory_store.append(name, _records(1))
        assert memory_store.streams("mcmc/main") == ["mcmc/main/chain_000", "mcmc/main/chain_001"]
        assert len(memory_store.streams()) == 3
        assert memory_store.streams("pmc") == []

    def test_in_memory_stores_are_independent(self):
        with SampleStore.in_memory() as a, SampleStore.in_memory() as b:
            a.append("s", _records(1))
            assert not b.has_stream("s")


# ============================================================================
# Durability
# ============================================================================


class TestDurability:
    def test_reopen_keeps_records(self, temp_dir):
        path = temp_dir / "scan.h5"
        with SampleStore.open(path, "w") as store:
            store.append("pmc/draws", _records(4))

        with SampleStore.open(path, "r") as store:
            assert store.rows("pmc/draws") == 4
            assert store.path == str(path)

    def test_committed_attribute(self, temp_dir):
        path = temp_dir / "scan.h5"
        with SampleStore.open(path, "w") as store:
            store.append("s", _records(3))
        with h5py.File(path, "r") as f:
            assert int(f["s"].attrs[COMMITTED_ATTR]) == 3

    def test_partial_chunk_detected(self, temp_dir):
        path = temp_dir / "scan.h5"
        with SampleStore.open(path, "w") as store:
            store.append("mcmc/main/chain_000", _records(4))

        # Simulate an interrupted write: rows grew but were never committed
        with h5py.File(path, "a") as f:
            f["mcmc/main/chain_000"].resize((6,))

        with pytest.raises(StorageError, match="Partially written") as exc_info:
            SampleStore.open(path, "r")
        assert exc_info.value.error_context["committed"] == 4
        assert exc_info.value.error_context["rows"] == 6

    def test_open_creates_parent_directory(self, temp_dir):
        path = temp_dir / "nested" / "out" / "scan.h5"
        with SampleStore.open(path, "w") as store:
            store.append("s", _records(1))
        assert path.exists()

    def test_open_missing_file_read_only(self, temp_dir):
        with pytest.raises(StorageError, match="Cannot open"):
            SampleStore.open(temp_dir / "missing.h5", "r")

    def test_close(self, temp_dir):
        store = SampleStore.open(temp_dir / "scan.h5", "w")
        assert store.is_open
        store.close()
        assert not store.is_open
        store.close()


# ============================================================================
# Metadata
# ============================================================================


class TestMetadata:
    def test_round_trip(self, memory_store):
        memory_store.set_metadata("mcmc", {"converged": True, "r_values": [1.01, 1.02], "seed": 5})
        memory_store.set_metadata("mcmc", {"state": "finished"})
        assert memory_store.metadata("mcmc") == {
            "converged": True,
            "r_values": [1.01, 1.02],
            "seed": 5,
            "state": "finished",
        }

    def test_stream_metadata_skips_committed(self, memory_store):
        memory_store.append("pmc/final", _records(2))
        memory_store.set_metadata("pmc/final", {"converged": False})
        assert memory_store.metadata("pmc/final") == {"converged": False}

    def test_missing_metadata(self, memory_store):
        assert memory_store.metadata("pmc") == {}

    def test_parameter_descriptions(self, memory_store):
        posterior = LogPosterior(lambda x: 0.0)
        posterior.add(flat_prior("a", 0.0, 1.0))
        posterior.add(flat_prior("b", -1.0, 1.0), nuisance=True)
        memory_store.write_parameter_descriptions(posterior.parameter_descriptions())

        descriptions = memory_store.parameter_descriptions()
        assert [d["name"] for d in descriptions] == ["a", "b"]
        assert descriptions[1]["nuisance"] is True
        assert descriptions[0]["maximum"] == 1.0
