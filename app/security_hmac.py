#!/usr/bin/env python3
import hmac
import hashlib
import time
from fastapi import Header, HTTPException, Request
from settings import settings

MAX_SKEW = 120  # seconds


def sign(secret: str, ts: int, body: bytes) -> str:
    """Signature the mobile client sends in X-Signature."""
    msg = str(ts).encode("utf-8") + b"." + body
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


async def hmac_guard(
    request: Request,
    x_api_key: str = Header(None),
    x_device_id: str = Header(None),
    x_ts: str = Header(None),
    x_signature: str = Header(None),
):
    """Verify device-signed requests that carry GPS fixes (when enabled)."""
    if not settings.hmac_required:
        return True
    if not all([x_api_key, x_device_id, x_ts, x_signature]):
        raise HTTPException(status_code=401, detail="missing auth headers")
    if x_api_key != settings.API_KEY_APP:
        raise HTTPException(status_code=401, detail="invalid api key")
    try:
        ts = int(x_ts)
    except ValueError:
        raise HTTPException(status_code=401, detail="bad timestamp")
    if abs(int(time.time()) - ts) > MAX_SKEW:
        raise HTTPException(status_code=401, detail="stale request")

    secret = settings.SIGNING_SECRET
    if not secret:
        raise HTTPException(status_code=500, detail="server signing secret not set")
    body = await request.body()
    if not hmac.compare_digest(sign(secret, ts, body), x_signature):
        raise HTTPException(status_code=401, detail="bad signature")

    # expose for handler if useful
    request.state.device_id = x_device_id
    request.state.ts = ts
    return True
