"""
Outbound SMS/WhatsApp and email for signer and borrower notices.

Delivery is best effort: a failed send is logged and reported as False,
never raised into the operation that triggered it.
"""
from __future__ import annotations

import logging

from errors import ProviderError
from providers.base import ProviderClient

logger = logging.getLogger(__name__)


class Notifier(ProviderClient):
    name = "notifications"

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def send_sms(self, phone: str, message: str, org_id: str) -> bool:
        if not self.enabled:
            logger.info("Notification gateway not configured; SMS to %s skipped", phone[-4:])
            return False
        try:
            resp = await self._post("/messages/sms", {"phone": phone, "message": message, "org_id": org_id})
        except ProviderError as e:
            logger.error("SMS send failed: %s", e.message)
            return False
        if not resp.ok:
            logger.error("SMS send rejected (%s): %s", resp.status_code, resp.raw)
        return resp.ok

    async def send_email(self, to: str, subject: str, html: str, org_id: str) -> bool:
        if not self.enabled:
            logger.info("Notification gateway not configured; email skipped")
            return False
        try:
            resp = await self._post("/messages/email", {"to": to, "subject": subject, "html": html, "org_id": org_id})
        except ProviderError as e:
            logger.error("Email send failed: %s", e.message)
            return False
        if not resp.ok:
            logger.error("Email send rejected (%s): %s", resp.status_code, resp.raw)
        return resp.ok
