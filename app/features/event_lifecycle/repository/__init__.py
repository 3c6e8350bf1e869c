from .event_repository import EventRepository, EventStore, allowed_sources

__all__ = ["EventRepository", "EventStore", "allowed_sources"]
