"""I/O helpers for scanmc."""

from scanmc.io.json_utils import dumps, json_safe, json_serializer, loads

__all__ = ["json_safe", "json_serializer", "dumps", "loads"]
