"""
vdc_client – asyncio client core for the video-consultation flow.

    api        ConsultationApi, REST contracts over httpx
    resolver   SessionStatusResolver, checkStatus with stale-result dropping
    queue      QueueMembershipManager
    events     EventBridge, the ws/events/ channel over websockets
    media      MediaSessionController + the MediaTransport protocol
    flow       ConsultationFlow, the consultation view state machine
"""

from .api import ConsultationApi, create_http_client
from .config import ClientSettings
from .events import EventBridge
from .flow import ConsultationFlow, FlowState, IllegalTransition
from .media import MediaSessionController, MediaState, MediaTransport
from .queue import QueueMembershipManager, diff_snapshots
from .resolver import SessionStatusResolver
from .scheduling import Debouncer, PeriodicTask

__all__ = [
    "ClientSettings",
    "ConsultationApi",
    "ConsultationFlow",
    "Debouncer",
    "EventBridge",
    "FlowState",
    "IllegalTransition",
    "MediaSessionController",
    "MediaState",
    "MediaTransport",
    "PeriodicTask",
    "QueueMembershipManager",
    "SessionStatusResolver",
    "create_http_client",
    "diff_snapshots",
]
