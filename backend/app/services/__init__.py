"""Domain services and external integrations."""

from app.services.events import event_broker
from app.services.matchmaker import matchmaker
from app.services.search_loops import search_loops
from app.services.stage_protocol import stage_protocol
from app.services.storage import avatar_storage

__all__ = ["event_broker", "matchmaker", "search_loops", "stage_protocol", "avatar_storage"]
