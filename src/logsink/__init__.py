"""
LogSink - loglevel log ingestor

A FastAPI-based service that authenticates client log batches against a
per-application secret and appends them to time-rotated JSON Lines files,
one serializing worker per application.
"""

__version__ = "0.1.0"

from .main import app

__all__ = ["app"]
