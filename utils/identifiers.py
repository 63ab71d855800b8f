"""Identifier and token generators."""
from __future__ import annotations

import secrets
import time
import uuid
from datetime import datetime, timezone
from typing import Optional


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def new_access_token() -> str:
    """Unguessable bearer token for signing links (~160 bits)."""
    return f"{uuid.uuid4().hex}-{secrets.token_hex(4)}"


def application_number_prefix(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"APP-{now.year}{now.month:02d}-"


def new_application_number(sequence: int, now: Optional[datetime] = None) -> str:
    return f"{application_number_prefix(now)}{sequence:05d}"


def new_reference(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def new_client_reference_id(schedule_id: Optional[str], max_length: int = 20) -> str:
    """Collection reference: EMI + schedule prefix + millisecond clock, capped for the provider."""
    schedule_prefix = schedule_id.replace("-", "")[:8] if schedule_id else "UPI"
    timestamp = str(int(time.time() * 1000))[-10:]
    return f"EMI{schedule_prefix}{timestamp}"[:max_length]
