"""
Error taxonomy shared by the adapters and the send flow.

Adapters log at their boundary and raise one of these; the session decides
whether an error stops the flow, degrades to an empty result, or is ignored.
"""


class ChatError(Exception):
    """Base class for every Parley Chat failure."""


class ValidationError(ChatError):
    """A message is missing a required field or carries an unknown role."""

    def __init__(self, message: str, fields=None):
        super().__init__(message)
        self.fields = list(fields or [])


class NotFoundError(ChatError):
    """The conversation a message refers to does not exist."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class StoreError(ChatError):
    """The persistence layer failed to create, insert or select."""


class AuthError(ChatError):
    """Sign-in, sign-out or current-user lookup failed."""


class ResponderError(ChatError):
    """The text-generation service did not produce a reply."""
