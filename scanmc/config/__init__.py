"""Configuration files for scanmc runs."""

from scanmc.config.manager import ConfigManager, load_likelihood

__all__ = ["ConfigManager", "load_likelihood"]
