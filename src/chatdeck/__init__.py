"""
chatdeck — multi-turn chat sessions with streamed replies and local history.
"""

__version__ = "0.1.0"
