"""
chatdeck Providers — the boundary to the generative-response backend.

The contract (ResponseBackend / ResponseHandle) lives in base; concrete
backends live alongside. Swap backends by changing config.
"""

from chatdeck.providers.base import InlineAttachment, ResponseBackend, ResponseHandle
from chatdeck.providers.registry import get_response_backend

__all__ = [
    "InlineAttachment",
    "ResponseBackend",
    "ResponseHandle",
    "get_response_backend",
]
