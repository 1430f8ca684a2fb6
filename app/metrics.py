from fastapi import APIRouter
from starlette.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST, Counter

router = APIRouter()

# incremented by the check-in, session and swipe services
CHECKIN_ATTEMPTS = Counter("checkin_attempts_total", "Check-in attempts started")
CHECKIN_OUTCOMES = Counter(
    "checkin_outcomes_total", "Check-in steps by resulting state or error", ["outcome"]
)
SWIPES = Counter("swipes_total", "Accepted swipes", ["direction"])
SWIPE_RECORD_FAILURES = Counter(
    "swipe_record_failures_total", "Swipes that could not be persisted"
)
MATCHES = Counter("matches_total", "Matches surfaced to users")
SESSIONS_ENDED = Counter("sessions_ended_total", "Sessions ended by the monitor", ["reason"])


@router.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
