"""Client for the Climate Data Store API: configuration, request submission, polling and resumable download."""

__version__ = "0.1.1"