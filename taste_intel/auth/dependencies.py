from __future__ import annotations

import os
import secrets

from fastapi import HTTPException, Request


def get_cron_secret() -> str:
    return os.getenv("CRON_SECRET", "")


def require_cron_secret(request: Request) -> None:
    """Raise 401 unless the request carries ``Bearer <CRON_SECRET>``. Open when no secret is set."""
    secret = get_cron_secret()
    if not secret:
        return
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), secret):
        raise HTTPException(status_code=401, detail="Not authenticated")
