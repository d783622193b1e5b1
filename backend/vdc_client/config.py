"""
vdc_client/config.py

Client configuration, read from VDC_* environment variables with local
development defaults.
"""

import os
from dataclasses import dataclass


@dataclass
class ClientSettings:
    api_url: str = "http://127.0.0.1:8000/api/"
    events_url: str = "ws://127.0.0.1:8000/ws/events/"
    request_timeout: float = 10.0

    # Real-time channel
    availability_debounce_seconds: float = 0.5

    # Consultation view
    participant_poll_seconds: float = 5.0
    duration_tick_seconds: float = 1.0
    end_redirect_delay_seconds: float = 2.0

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            api_url=env.get("VDC_API_URL", defaults.api_url),
            events_url=env.get("VDC_EVENTS_URL", defaults.events_url),
            request_timeout=float(env.get("VDC_REQUEST_TIMEOUT", defaults.request_timeout)),
            availability_debounce_seconds=float(
                env.get("VDC_AVAILABILITY_DEBOUNCE_SECONDS", defaults.availability_debounce_seconds)
            ),
            participant_poll_seconds=float(
                env.get("VDC_PARTICIPANT_POLL_SECONDS", defaults.participant_poll_seconds)
            ),
            duration_tick_seconds=float(env.get("VDC_DURATION_TICK_SECONDS", defaults.duration_tick_seconds)),
            end_redirect_delay_seconds=float(
                env.get("VDC_END_REDIRECT_DELAY_SECONDS", defaults.end_redirect_delay_seconds)
            ),
        )
