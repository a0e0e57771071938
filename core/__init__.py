"""In-process domain events and the bus that delivers them."""

from core.events import AuthEvent, SessionChanged, AuthStateChanged
from core.event_bus import EventBus
