"""Configuration snapshot and restore for the VPS remote-dev bootstrap."""

from .__version__ import __version__

__all__ = ["__version__"]
