# teleconsult/policy.py
#
# The "what should this doctor/patient pair do right now?" decision.
# Pure: no queries, no writes. services.check_status() reads the records,
# asks resolve_action() and performs the one write (auto-join) itself.

ACTION_REJOIN          = "rejoin"
ACTION_ENDED           = "ended"
ACTION_IN_CONSULTATION = "in_consultation"
ACTION_WAIT            = "wait"
ACTION_JOIN            = "joined"
ACTION_NONE            = "none"
ACTION_CONFLICT        = "conflict"

ACTIONS = (
    ACTION_REJOIN,
    ACTION_ENDED,
    ACTION_NONE,
    ACTION_WAIT,
    ACTION_JOIN,
    ACTION_IN_CONSULTATION,
    ACTION_CONFLICT,
)

_FINISHED = ("completed", "cancelled")


def resolve_action(active_session, latest_session, queue_entry, auto_join, busy_elsewhere=False):
    """
    Decide the next action for one doctor/patient pair.

    active_session  -- the pair's ongoing ConsultationSession, or None
    latest_session  -- the pair's most recent ConsultationSession of any status, or None
    queue_entry     -- the pair's active QueueEntry (waiting / in_consultation), or None
    auto_join       -- True only for patient-initiated checks
    busy_elsewhere  -- the patient is in an ongoing consultation with another doctor

    Returns ACTION_JOIN when the caller should create a queue entry; the
    caller reports "joined" once it has.
    """
    if active_session is not None and active_session.status == "ongoing":
        return ACTION_REJOIN

    if busy_elsewhere:
        return ACTION_CONFLICT

    if (
        latest_session is not None
        and latest_session.status in _FINISHED
        and queue_entry is None
    ):
        return ACTION_ENDED

    if queue_entry is not None:
        if queue_entry.status == "in_consultation":
            return ACTION_IN_CONSULTATION
        if queue_entry.status == "waiting":
            return ACTION_WAIT

    if auto_join:
        return ACTION_JOIN

    return ACTION_NONE


def format_estimated_wait(minutes):
    if minutes <= 0:
        return "Less than a minute"
    if minutes == 1:
        return "1 minute"
    return f"{minutes} minutes"
