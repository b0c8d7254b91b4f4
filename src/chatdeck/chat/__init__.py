"""
Chat orchestration — streaming aggregation and the session/view controller.
"""

from chatdeck.chat.aggregator import ERROR_MESSAGE_TEXT, MessageAggregator
from chatdeck.chat.contracts import StreamEvent, StreamEventType
from chatdeck.chat.controller import INIT_ERROR_TEXT, ChatController, ViewMode

__all__ = [
    "ERROR_MESSAGE_TEXT",
    "INIT_ERROR_TEXT",
    "ChatController",
    "MessageAggregator",
    "StreamEvent",
    "StreamEventType",
    "ViewMode",
]
