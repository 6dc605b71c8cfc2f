"""
Audit consumption package.

The processor reports partial batch failure as a ``BatchResult``; channel
adapters decide how the failed subset gets redelivered.
"""

from .models import BatchResult, ChannelMessage, PersistedAuditRecord
from .processor import AuditBatchProcessor

__all__ = ["AuditBatchProcessor", "BatchResult", "ChannelMessage", "PersistedAuditRecord"]
