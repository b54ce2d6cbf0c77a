"""Mailbox Sync - Import IMAP mail into threaded conversations linked to customer orders."""

from mailbox_sync.core.models import (
    AttachmentMeta,
    ConversationThread,
    DecodedBody,
    Order,
    OrderMatch,
    ParsedEnvelope,
    SyncSummary,
)
from mailbox_sync.pipeline.orchestrator import SyncOrchestrator
from mailbox_sync.pipeline.scheduler import SyncCoordinator

__all__ = [
    "AttachmentMeta",
    "ConversationThread",
    "DecodedBody",
    "Order",
    "OrderMatch",
    "ParsedEnvelope",
    "SyncCoordinator",
    "SyncOrchestrator",
    "SyncSummary",
]
