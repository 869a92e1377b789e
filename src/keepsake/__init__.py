"""Keepsake - remembers what people say about the people they talk about."""

from .config import MemoryConfig
from .logging import EventLog
from .memory import MemoryPipeline, build_pipeline

__version__ = "0.1.0"

__all__ = ["EventLog", "MemoryConfig", "MemoryPipeline", "build_pipeline"]
