from bookswap.conversations.link import Conversation, ConversationLink, SqliteConversationLink

__all__ = ["Conversation", "ConversationLink", "SqliteConversationLink"]
