"""CloudSweep - cloud resource lifecycle governance engine."""

__version__ = "0.1.0"
