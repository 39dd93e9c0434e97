"""mirrorsync - low-latency one-way directory mirroring over rsync."""

__version__ = "0.1.0"
