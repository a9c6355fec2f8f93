"""Shared utilities."""
from .events import EventEmitter

__all__ = ["EventEmitter"]
