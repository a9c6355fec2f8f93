"""Orchestrator package - coordinates concurrent uploads."""
from .core import StreamingClient
from .models import BatchSummary
from .transfer import TransferBatch, TransferOrchestrator

__all__ = ["StreamingClient", "BatchSummary", "TransferBatch", "TransferOrchestrator"]
