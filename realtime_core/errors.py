"""Error taxonomy for the realtime core.

Every error carries a human-readable ``message`` that is safe to send back to
the originating connection as the payload of an ``error`` event.
"""
from typing import Optional


class ChatError(Exception):
    message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        if message:
            self.message = message
        super().__init__(self.message)


class AuthError(ChatError):
    message = "Authentication error"


class MissingCredential(AuthError):
    message = "No token, authorization denied"


class InvalidCredential(AuthError):
    message = "Token is not valid"


class UnknownUser(AuthError):
    message = "User not found"


class NotAuthenticated(AuthError):
    message = "Not authenticated"


class AccessDenied(ChatError):
    message = "Access denied to conversation"


class NotFound(ChatError):
    message = "Conversation not found"


class InvalidMessage(ChatError):
    message = "Message content cannot be empty"


class UnknownConnection(ChatError):
    message = "Connection is no longer registered"


class TransportFailure(ChatError):
    message = "Delivery to connection failed"
