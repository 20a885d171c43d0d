"""Touch Portal plugin bridging Pear Desktop (YouTube Music)."""

__version__ = "1.0.0"
