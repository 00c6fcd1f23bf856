"""List running processes and query an embedded diagnostics agent."""

__version__ = "0.1.0"