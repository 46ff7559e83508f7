"""
Exceptions raised by the chatbot flow engine.
"""


class ChatbotEngineError(Exception):
    """Base error for the chatbot flow engine."""


class FlowDefinitionError(ChatbotEngineError):
    """Raised when flow graph data is malformed."""


class ExecutionStateError(ChatbotEngineError):
    """Raised on an illegal execution status transition."""


class CapabilityError(ChatbotEngineError):
    """Raised when an external capability (AI, integration) fails."""
