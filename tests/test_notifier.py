import requests

from payproof.decision import DecisionOutcome, PaymentDecision
from payproof.output_handler import LoggingNotifier, WebhookNotifier, build_notifier
from payproof.output_handler.notifier import EVENT_AUTO_APPROVED, EVENT_REVIEW_NEEDED, event_for


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def review_decision():
    return PaymentDecision(run_id="run_1", content_hash="abc", outcome=DecisionOutcome.PENDING_REVIEW,
                           reason="store unavailable", review_ticket_id="ticket_1")


def test_event_names():
    assert event_for(review_decision()) == EVENT_REVIEW_NEEDED
    approved = PaymentDecision(run_id="r", content_hash="h", outcome=DecisionOutcome.AUTO_APPROVED,
                               reason="auto-approved")
    assert event_for(approved) == EVENT_AUTO_APPROVED


def test_webhook_posts_json(monkeypatch):
    sent = {}

    def fake_post(url, json=None, timeout=None):
        sent.update(url=url, json=json, timeout=timeout)
        return FakeResponse()

    monkeypatch.setattr(requests, "post", fake_post)
    assert WebhookNotifier("https://hooks.example.com/pay", timeout=3).notify(review_decision())

    assert sent["url"] == "https://hooks.example.com/pay"
    assert sent["timeout"] == 3.0
    assert sent["json"]["event"] == EVENT_REVIEW_NEEDED
    assert sent["json"]["review_ticket_id"] == "ticket_1"
    assert sent["json"]["submission_id"] is None


def test_webhook_failures_return_false(monkeypatch):
    monkeypatch.setattr(requests, "post", lambda url, json=None, timeout=None: FakeResponse(503))
    assert not WebhookNotifier("https://hooks.example.com/pay").notify(review_decision())

    def refuse(url, json=None, timeout=None):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "post", refuse)
    assert not WebhookNotifier("https://hooks.example.com/pay").notify(review_decision())


def test_webhook_without_url_is_skipped():
    assert not WebhookNotifier(url="").notify(review_decision())


def test_build_notifier():
    assert isinstance(build_notifier(), LoggingNotifier)
    assert isinstance(build_notifier("https://hooks.example.com/pay"), WebhookNotifier)
    assert LoggingNotifier().notify(review_decision())
