# backend/courier/services/messaging/__init__.py
"""
Realtime messaging package.

Architecture:
- ConnectionRegistry keeps user -> connections (multi-device) in process memory
- FanoutRouter validates inbound frames, applies lifecycle transitions and
  writes the resulting events to every live connection of each affected user
- DatabasePresenceStore persists the registry's online/offline transitions

Single routing process: fan-out across several nodes needs an external
broker and is not handled here.
"""

from courier.services.messaging.events import SCHEMA_VERSION, EventType, build_event
from courier.services.messaging.fanout import FanoutRouter
from courier.services.messaging.inbound import InboundEvent, parse_inbound
from courier.services.messaging.presence_store import DatabasePresenceStore
from courier.services.messaging.registry import (
    Connection,
    ConnectionRegistry,
    RegistrationResult,
    UnregistrationResult,
)

__all__ = [
    # Registry
    "Connection",
    "ConnectionRegistry",
    "RegistrationResult",
    "UnregistrationResult",
    "DatabasePresenceStore",
    # Router
    "FanoutRouter",
    # Events
    "EventType",
    "InboundEvent",
    "SCHEMA_VERSION",
    "build_event",
    "parse_inbound",
]
