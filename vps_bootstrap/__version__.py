"""Version information for vps-bootstrap."""

__version__ = "1.2.0"
