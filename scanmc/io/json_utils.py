"""JSON utility functions for scanmc I/O operations.

Run metadata (configurations, R-values, acceptance rates) is stored as JSON
strings in HDF5 attributes; these helpers make numpy values serializable.
"""

from __future__ import annotations

import json
from typing import Any

import numpy as np


def json_safe(value: Any) -> Any:
    """Recursively convert numpy arrays and special types to JSON-safe types.

    Parameters
    ----------
    value : Any
        Value to convert (can be nested dict, list, numpy array, etc.)

    Returns
    -------
    Any
        JSON-serializable version of the input

    Examples
    --------
    >>> json_safe(np.array([1, 2, 3]))
    [1, 2, 3]
    >>> json_safe({"arr": np.array([1.0, 2.0]), "val": np.float64(3.14)})
    {'arr': [1.0, 2.0], 'val': 3.14}
    """
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    elif isinstance(value, np.ndarray):
        return value.tolist()
    elif isinstance(value, (np.bool_,)):
        return bool(value)
    elif isinstance(value, (np.integer, np.floating)):
        return value.item()
    elif hasattr(value, "tolist"):
        return value.tolist()
    else:
        return value


def json_serializer(obj: Any) -> Any:
    """JSON serializer for numpy arrays and other objects.

    Use as the `default` argument to json.dump/dumps.
    """
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, (np.bool_,)):
        return bool(obj)
    elif hasattr(obj, "tolist"):
        return obj.tolist()
    else:
        return str(obj)


def dumps(value: Any) -> str:
    """Serialize ``value`` to a JSON string, allowing NaN and infinities."""
    return json.dumps(json_safe(value), default=json_serializer)


def loads(text: str | bytes) -> Any:
    """Inverse of :func:`dumps`."""
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    return json.loads(text)
