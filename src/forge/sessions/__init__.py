"""Sessions, turns and the events they produce."""

from .aggregator import TurnAggregator
from .events import EventKind, EventSink, NormalizedEvent
from .models import ConversationExport, HistoryMessage, Session
from .registry import SessionRegistry

__all__ = [
    "ConversationExport",
    "EventKind",
    "EventSink",
    "HistoryMessage",
    "NormalizedEvent",
    "Session",
    "SessionRegistry",
    "TurnAggregator",
]
