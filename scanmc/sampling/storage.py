"""Append-only HDF5 sample store.

Every stream is a resizable one-dimensional dataset of structured records.
A chunk is appended in one durable write: resize, write, update the
``committed`` row attribute, flush. A stream whose row count differs from
its committed count was interrupted mid-write and is rejected on reopen.

Layout::

    /parameters                 attrs: descriptions (JSON)
    /mcmc/prerun/chain_000      SampleRecord stream
    /mcmc/main/chain_000        SampleRecord stream
    /pmc/draws                  SampleRecord stream (weights NaN)
    /pmc/weights/<min>_<max>    SampleRecord stream
    /pmc/samples                SampleRecord stream (one block per update)
    /pmc/components             mixture component stream
    /pmc/final                  SampleRecord stream

Run metadata lives in JSON-encoded attributes of groups and datasets.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import h5py
import numpy as np

from scanmc.io.json_utils import dumps, loads
from scanmc.sampling.exceptions import StorageError
from scanmc.utils.logging import get_logger

logger = get_logger(__name__)

COMMITTED_ATTR = "committed"
PARAMETERS_GROUP = "parameters"


def record_dtype(dimension: int) -> np.dtype:
    """Structured dtype of a SampleRecord with ``dimension`` parameters."""
    return np.dtype(
        [
            ("point", np.float64, (dimension,)),
            ("log_posterior", np.float64),
            ("weight", np.float64),
            ("group", np.int32),
            ("iteration", np.int64),
        ]
    )


def make_records(
    points: np.ndarray,
    log_posterior: np.ndarray | float = np.nan,
    weight: np.ndarray | float = 1.0,
    group: np.ndarray | int = 0,
    iteration: np.ndarray | int | None = None,
) -> np.ndarray:
    """Pack arrays into SampleRecords.

    Scalars are broadcast; ``iteration`` defaults to the row index.
    """
    points = np.atleast_2d(np.asarray(points, dtype=float))
    n, d = points.shape
    records = np.empty(n, dtype=record_dtype(d))
    records["point"] = points
    records["log_posterior"] = log_posterior
    records["weight"] = weight
    records["group"] = group
    records["iteration"] = np.arange(n) if iteration is None else iteration
    return records


class SampleStore:
    """Thread-safe append-only store on top of an ``h5py.File``.

    Use :meth:`open` for a file on disk and :meth:`in_memory` for a store
    that is never written to disk (tests, dry runs).

    Examples
    --------
    >>> with SampleStore.open("scan.h5", "w") as store:
    ...     store.append("mcmc/main/chain_000", make_records(points))
    ...     records = store.read("mcmc/main/chain_000", 0, 100)
    """

    def __init__(self, handle: h5py.File, path: str | None = None):
        self._file = handle
        self.path = path
        self._lock = threading.Lock()
        self._check_committed()

    @classmethod
    def open(cls, path: str | Path, mode: str = "a") -> SampleStore:
        """Open (or create) an HDF5 store.

        Raises
        ------
        StorageError
            If the file cannot be opened or holds a partially written chunk.
        """
        path = Path(path)
        try:
            if mode in ("w", "a", "x") and path.parent != Path(""):
                path.parent.mkdir(parents=True, exist_ok=True)
            handle = h5py.File(path, mode)
        except OSError as e:
            raise StorageError(
                f"Cannot open sample store: {e}", error_context={"path": str(path), "mode": mode}
            ) from e

        try:
            store = cls(handle, str(path))
        except StorageError:
            handle.close()
            raise
        logger.debug(f"Opened sample store {path} (mode={mode})")
        return store

    @classmethod
    def in_memory(cls, name: str | None = None) -> SampleStore:
        """Store backed by an HDF5 core driver without a backing file."""
        name = name or f"scanmc-{uuid.uuid4().hex}.h5"
        handle = h5py.File(name, "w", driver="core", backing_store=False)
        return cls(handle, None)

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def _check_committed(self) -> None:
        problems: list[tuple[str, int, int]] = []

        def visit(name: str, obj: Any) -> None:
            if isinstance(obj, h5py.Dataset) and COMMITTED_ATTR in obj.attrs:
                committed = int(obj.attrs[COMMITTED_ATTR])
                if committed != obj.shape[0]:
                    problems.append((name, committed, obj.shape[0]))

        self._file.visititems(visit)
        if problems:
            name, committed, rows = problems[0]
            raise StorageError(
                "Partially written chunk detected",
                error_context={
                    "path": self.path,
                    "stream": name,
                    "committed": committed,
                    "rows": rows,
                },
            )

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def append(self, stream: str, records: np.ndarray) -> int:
        """Append ``records`` to ``stream`` in one durable write.

        Returns
        -------
        int
            Committed row count of the stream after the write.
        """
        records = np.asarray(records)
        with self._lock:
            try:
                if stream in self._file:
                    dataset = self._file[stream]
                    if dataset.dtype != records.dtype:
                        raise StorageError(
                            "Record type does not match stream",
                            error_context={
                                "stream": stream,
                                "stream_dtype": str(dataset.dtype),
                                "record_dtype": str(records.dtype),
                            },
                        )
                else:
                    dataset = self._file.create_dataset(
                        stream,
                        shape=(0,),
                        maxshape=(None,),
                        dtype=records.dtype,
                        chunks=True,
                    )
                    dataset.attrs[COMMITTED_ATTR] = 0

                start = int(dataset.attrs[COMMITTED_ATTR])
                stop = start + records.shape[0]
                if stop == start:
                    return stop
                dataset.resize((stop,))
                dataset[start:stop] = records
                dataset.attrs[COMMITTED_ATTR] = stop
                self._file.flush()
            except StorageError:
                raise
            except (OSError, ValueError, TypeError, KeyError) as e:
                raise StorageError(
                    f"Failed to append to stream: {e}",
                    error_context={"path": self.path, "stream": stream},
                ) from e

        return stop

    def read(self, stream: str, start: int = 0, stop: int | None = None) -> np.ndarray:
        """Committed records ``[start, stop)`` of ``stream``."""
        with self._lock:
            if stream not in self._file:
                raise StorageError(
                    "No such stream", error_context={"path": self.path, "stream": stream}
                )
            dataset = self._file[stream]
            committed = int(dataset.attrs.get(COMMITTED_ATTR, dataset.shape[0]))
            stop = committed if stop is None else min(stop, committed)
            start = max(0, start)
            if start >= stop:
                return np.empty(0, dtype=dataset.dtype)
            return dataset[start:stop]

    def rows(self, stream: str) -> int:
        with self._lock:
            if stream not in self._file:
                return 0
            return int(self._file[stream].attrs.get(COMMITTED_ATTR, self._file[stream].shape[0]))

    def has_stream(self, stream: str) -> bool:
        with self._lock:
            return stream in self._file and isinstance(self._file[stream], h5py.Dataset)

    def streams(self, prefix: str = "") -> list[str]:
        """Sorted names of all datasets below ``prefix``."""
        names: list[str] = []
        with self._lock:
            root = self._file
            if prefix:
                if prefix not in self._file:
                    return []
                root = self._file[prefix]
            if isinstance(root, h5py.Dataset):
                return [prefix]

            def visit(name: str, obj: Any) -> None:
                if isinstance(obj, h5py.Dataset):
                    names.append(f"{prefix.rstrip('/')}/{name}" if prefix else name)

            root.visititems(visit)
        return sorted(names)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def set_metadata(self, name: str, mapping: Mapping[str, Any]) -> None:
        """Merge ``mapping`` into the attributes of group or stream ``name``.

        Values are stored as JSON strings; a missing group is created.
        """
        with self._lock:
            try:
                obj = self._file[name] if name in self._file else self._file.require_group(name)
                for key, value in mapping.items():
                    obj.attrs[key] = dumps(value)
                self._file.flush()
            except (OSError, ValueError, TypeError) as e:
                raise StorageError(
                    f"Failed to write metadata: {e}",
                    error_context={"path": self.path, "name": name},
                ) from e

    def metadata(self, name: str) -> dict[str, Any]:
        """Metadata previously written with :meth:`set_metadata`."""
        with self._lock:
            if name not in self._file:
                return {}
            result = {}
            for key, value in self._file[name].attrs.items():
                if key == COMMITTED_ATTR:
                    continue
                if isinstance(value, bytes):
                    value = value.decode()
                result[key] = loads(value) if isinstance(value, str) else value
            return result

    def write_parameter_descriptions(self, descriptions: Iterable[Any]) -> None:
        """Store the ordered parameter descriptions of a run."""
        entries = [
            {
                "name": d.name,
                "minimum": d.minimum,
                "maximum": d.maximum,
                "prior_kind": d.prior_kind,
                "nuisance": d.nuisance,
            }
            for d in descriptions
        ]
        self.set_metadata(PARAMETERS_GROUP, {"descriptions": entries})

    def parameter_descriptions(self) -> list[dict[str, Any]]:
        return self.metadata(PARAMETERS_GROUP).get("descriptions", [])

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return bool(self._file.id.valid)

    def close(self) -> None:
        with self._lock:
            if self._file.id.valid:
                self._file.flush()
                self._file.close()

    def __enter__(self) -> SampleStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SampleStore(path={self.path!r})"
