"""Agency client portal backend: proposal to invoice lifecycle."""

__version__ = "0.1.0"
