# src/infra/__init__.py
"""
Инфраструктурный слой: PostgreSQL и RabbitMQ.
"""

from src.infra.database import DatabaseManager, get_db
from src.infra.event_bus import DomainEvent, EventBus, EventTypes, get_event_bus

__all__ = [
    "DatabaseManager",
    "get_db",
    "DomainEvent",
    "EventBus",
    "EventTypes",
    "get_event_bus",
]
