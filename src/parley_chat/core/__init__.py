# Core components for Parley Chat

from .errors import (
    ChatError,
    ValidationError,
    NotFoundError,
    StoreError,
    AuthError,
    ResponderError
)

from .event import (
    Event,
    StandardEventTypes,
    create_insert_event,
    create_auth_event
)

from .event_bus import (
    EventBus,
    EventBusError
)

from .models import (
    ChatMessage,
    Identity,
    Role
)

from .sync import (
    LiveSyncChannel,
    MessageList,
    MessageSync,
    SyncState
)

from .session import (
    BootstrapResult,
    ChatSession,
    SendResult
)

from .context import ChatContext


__all__ = [
    # Errors
    'ChatError',
    'ValidationError',
    'NotFoundError',
    'StoreError',
    'AuthError',
    'ResponderError',
    # Event system
    'Event',
    'StandardEventTypes',
    'create_insert_event',
    'create_auth_event',
    'EventBus',
    'EventBusError',
    # Data
    'ChatMessage',
    'Identity',
    'Role',
    # Sync
    'LiveSyncChannel',
    'MessageList',
    'MessageSync',
    'SyncState',
    # Session
    'BootstrapResult',
    'ChatSession',
    'SendResult',
    'ChatContext'
]
