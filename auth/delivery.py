"""
auth/delivery.py -- Hand-off point for issued verification tokens.

Sending email or SMS is not this service's job. Routes pass every freshly
issued plaintext token to the TokenDelivery on app.state; deployments plug
in their mailer there, tests plug in a recorder.

LoggingDelivery is the default. It records that a token was issued and for
whom -- never the token itself.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.models import TokenType

logger = logging.getLogger("chitterauth.auth.delivery")


class TokenDelivery(Protocol):
    def deliver(self, token_type: TokenType, user_id: str, destination: str, token: str) -> None: ...


class LoggingDelivery:
    def deliver(self, token_type: TokenType, user_id: str, destination: str, token: str) -> None:
        logger.info("No delivery backend configured; dropped %s token for user %s", token_type.value, user_id)
