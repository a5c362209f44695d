from .message_sender import (
    LiveMessageSender,
    MessageSender,
    MessageSenderSelector,
    SimulatedMessageSender,
)

__all__ = [
    "LiveMessageSender",
    "MessageSender",
    "MessageSenderSelector",
    "SimulatedMessageSender",
]
