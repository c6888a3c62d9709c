"""
auth/audit.py -- Structured audit events for security-relevant actions.

One JSON object per log line on the "chitterauth.audit" logger, so log
shippers can index fields without a custom parser.

Never pass secrets here: no passwords, refresh tokens or verification
tokens. User ids, session ids, IPs and internal outcome reasons only.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

logger = logging.getLogger("chitterauth.audit")


def log_auth_event(
    event: str,
    user_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    level: int = logging.INFO,
    **metadata,
) -> None:
    entry = {
        "event": event,
        "user_id": user_id,
        "ip": ip,
        "user_agent": user_agent,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if metadata:
        entry["metadata"] = metadata
    logger.log(level, json.dumps(entry, default=str))
