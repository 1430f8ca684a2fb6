"""QR payload parsing plus event token and access code helpers."""
import base64
import binascii
import re
import secrets
import time
from typing import Optional

from pydantic import BaseModel

UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
CHECKIN_URL_RE = re.compile(r"/event/([^/?#]+)/checkin\?token=([^&#]+)")
EVENT_URL_RE = re.compile(r"/event/([^/?#]+)")

# no 0/O/1/I to keep codes readable aloud
ACCESS_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ACCESS_CODE_LENGTH = 6


class ScannedCode(BaseModel):
    """What a scanned or typed payload refers to."""
    event_id: Optional[str] = None
    token: Optional[str] = None
    access_code: Optional[str] = None


def _is_uuid(value: str) -> bool:
    return UUID_RE.fullmatch(value) is not None


def is_access_code(value: str) -> bool:
    value = value.upper()
    return len(value) == ACCESS_CODE_LENGTH and all(c in ACCESS_CODE_ALPHABET for c in value)


def parse_check_in_code(payload: str) -> Optional[ScannedCode]:
    """
    Recognise the payload formats printed on event QR codes.

    - check-in URL: ``.../event/<uuid>/checkin?token=<token>``
    - event URL:    ``.../event/<uuid>``
    - bare event UUID
    - 6-character access code

    Returns None for anything else.
    """
    payload = (payload or "").strip()
    if not payload:
        return None

    m = CHECKIN_URL_RE.search(payload)
    if m:
        event_id, token = m.group(1), m.group(2)
        return ScannedCode(event_id=event_id, token=token) if _is_uuid(event_id) else None

    m = EVENT_URL_RE.search(payload)
    if m:
        return ScannedCode(event_id=m.group(1)) if _is_uuid(m.group(1)) else None

    if _is_uuid(payload):
        return ScannedCode(event_id=payload)

    if is_access_code(payload):
        return ScannedCode(access_code=payload.upper())

    return None


def generate_access_code() -> str:
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(ACCESS_CODE_LENGTH))


def generate_event_token(event_id: str, now_ms: Optional[int] = None) -> str:
    """Url-safe, unpadded base64 of ``<event_id>-<millis>-<random>``."""
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    raw = f"{event_id}-{millis}-{secrets.token_hex(6)}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def validate_event_token(token: str, event_id: str) -> bool:
    try:
        padded = token + "=" * (-len(token) % 4)
        decoded = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return False
    return decoded.startswith(f"{event_id}-")


def build_check_in_url(base_url: str, event_id: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/#/event/{event_id}/checkin?token={token}"
