"""
Decision Notifiers.

Outbound, fire-and-forget notifications about decisions. A notifier
never raises: delivery problems are logged and reported as False.

Events:
    - payment_auto_approved
    - review_needed

Author: ML Engineering Team
"""

from typing import Any, Dict, Optional

import requests

from payproof.config import get_config
from payproof.decision.payment_decision import DecisionOutcome, PaymentDecision
from payproof.utils.logger import get_logger

logger = get_logger(__name__)

EVENT_AUTO_APPROVED = "payment_auto_approved"
EVENT_REVIEW_NEEDED = "review_needed"


def event_for(decision: PaymentDecision) -> str:
    if decision.outcome == DecisionOutcome.AUTO_APPROVED:
        return EVENT_AUTO_APPROVED
    return EVENT_REVIEW_NEEDED


def build_payload(event: str, decision: PaymentDecision) -> Dict[str, Any]:
    return {
        'event': event,
        'decision_id': decision.decision_id,
        'run_id': decision.run_id,
        'outcome': decision.outcome.value,
        'reason': decision.reason,
        'submission_id': decision.chosen.submission.id if decision.chosen else None,
        'confidence': decision.chosen.confidence if decision.chosen else None,
        'review_ticket_id': decision.review_ticket_id,
    }


class LoggingNotifier:
    """Default notifier: writes events to the log."""

    def notify(self, decision: PaymentDecision) -> bool:
        event = event_for(decision)
        logger.info(f"[{event}] {decision!r} ticket={decision.review_ticket_id}")
        return True


class WebhookNotifier:
    """
    Posts events as JSON to a webhook URL.

    Example:
        >>> notifier = WebhookNotifier("https://hooks.example.com/payments")
        >>> notifier.notify(decision)
        True
    """

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.url = url or get_config("notifications.webhook.url", "")
        self.timeout = float(timeout if timeout is not None else get_config("notifications.webhook.timeout_seconds", 5.0))

    def notify(self, decision: PaymentDecision) -> bool:
        if not self.url:
            logger.warning("Webhook URL not configured; notification skipped")
            return False

        event = event_for(decision)
        try:
            response = requests.post(self.url, json=build_payload(event, decision), timeout=self.timeout)
            response.raise_for_status()
            logger.debug(f"Webhook delivered {event} for {decision.decision_id}")
            return True
        except requests.RequestException as e:
            logger.error(f"Webhook delivery failed for {decision.decision_id}: {e}")
            return False


def build_notifier(webhook_url: Optional[str] = None):
    """Webhook notifier when enabled in settings or given a URL, otherwise logging."""
    if webhook_url or get_config("notifications.webhook.enabled", False):
        return WebhookNotifier(url=webhook_url)
    return LoggingNotifier()
