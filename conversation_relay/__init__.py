"""
Conversation relay for the law-office CRM.

Real-time chat relay: clients identify themselves, join conversation rooms and
broadcast messages to every member of a room over WebSocket.
"""

__version__ = "0.1.0"
