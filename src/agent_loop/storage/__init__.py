"""
Storage module - durable conversation persistence.
"""

from .conversation import ConversationStore, current_timestamp, write_json_atomic

__all__ = [
    "ConversationStore",
    "current_timestamp",
    "write_json_atomic",
]
