"""Run RustScan port scans in Docker from the command line or a queued HTTP API."""

__version__ = "0.1.0"