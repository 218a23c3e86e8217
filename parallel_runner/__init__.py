"""Dispatches build-process jobs to an external worker pool over a message bus."""

__version__ = "0.1.0"
