"""Conversation history: the message store and its token-budget packer."""

from stepwise.conversation.context import ContextPacker
from stepwise.conversation.store import ConversationStore

__all__ = [
    "ContextPacker",
    "ConversationStore",
]
