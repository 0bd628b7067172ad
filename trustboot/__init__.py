"""trustboot: mutual-TLS trust bootstrap for clusters."""

__version__ = "1.0.0"
