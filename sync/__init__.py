"""Sync pipeline and webhook processing."""
from .pipeline import ScopeError, ScopeResult, SyncPipeline, SyncReport, SyncState
from .webhooks import HRWebhookProcessor

__all__ = [
    "ScopeError",
    "ScopeResult",
    "SyncPipeline",
    "SyncReport",
    "SyncState",
    "HRWebhookProcessor",
]
