"""
notifier/alerts.py

Escalation alerts for the auto-recovery engine.

Every escalation is surfaced as a CRITICAL log entry carrying the recommended
operator actions. When a webhook URL is configured the alert is also posted
as a Discord-style embed. Delivery failures are logged, never raised.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import aiohttp

if TYPE_CHECKING:
    from recovery.types import RecoveryActionRecord

logger = logging.getLogger(__name__)

RECOMMENDED_ACTIONS = [
    "Check service logs",
    "Verify system resources",
    "Consider manual restart",
    "Contact system administrator if issues persist",
]

ALERT_COLOR_RED = 15158332


class EscalationNotifier:
    """Surfaces escalations to humans."""

    def __init__(self, webhook_url: Optional[str] = None, timeout_seconds: float = 10.0):
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self.alerts_sent = 0
        self.alerts_failed = 0

    async def notify_escalation(self, service: str, record: "RecoveryActionRecord") -> bool:
        """
        Alert an operator that ``service`` requires manual intervention.

        Returns:
            True if every configured channel accepted the alert
        """
        steps = "; ".join(f"{i}. {step}" for i, step in enumerate(RECOMMENDED_ACTIONS, start=1))
        logger.critical(
            f"CRITICAL: {service} requires manual intervention. Recommended actions: {steps}",
            extra={"component": service, "recovery_action_id": record.id},
        )

        if not self.webhook_url:
            return True
        return await self._send_webhook(self._build_payload(service, record))

    def _build_payload(self, service: str, record: "RecoveryActionRecord") -> Dict[str, Any]:
        fields: List[Dict[str, Any]] = [
            {"name": "Service", "value": service, "inline": True},
            {"name": "Escalated At", "value": record.timestamp.isoformat(), "inline": True},
            {"name": "Status", "value": "RECOVERY MODE ACTIVE", "inline": True},
            {
                "name": "Recommended Actions",
                "value": "\n".join(
                    f"{i}. {step}" for i, step in enumerate(RECOMMENDED_ACTIONS, start=1)
                ),
                "inline": False,
            },
        ]
        return {
            "embeds": [
                {
                    "title": "CRITICAL: service requires manual intervention",
                    "description": record.details,
                    "color": ALERT_COLOR_RED,
                    "fields": fields,
                    "footer": {"text": "Auto-Recovery Escalation"},
                }
            ]
        }

    async def _send_webhook(self, payload: Dict[str, Any]) -> bool:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.webhook_url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    if response.status in (200, 204):
                        self.alerts_sent += 1
                        logger.info("Escalation alert sent successfully")
                        return True
                    self.alerts_failed += 1
                    logger.error(f"Failed to send escalation alert: HTTP {response.status}")
                    return False
        except Exception as e:
            self.alerts_failed += 1
            logger.exception(f"Error sending escalation alert: {e}")
            return False
