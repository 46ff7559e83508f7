from .base import Base, TimestampMixin

# Chatbot Models
from .chatbot import (
    ChatbotFlow,
    ChatbotNode,
    ChatbotEdge,
    ChatbotExecution
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    
    # Chatbot
    "ChatbotFlow",
    "ChatbotNode",
    "ChatbotEdge",
    "ChatbotExecution"
]
