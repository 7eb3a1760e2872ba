"""
LLM analyzer and suggested responses against a fake chat client (no network).
Run: pytest tests/test_llm_client.py -v
"""

import json

import pytest

from app.ml.llm_client import LLMTicketAnalyzer
from app.models import SenderType, Sentiment, TicketCategory, TicketPriority
from app.services.responder import fallback_response, generate_suggested_response
from app.services.ticket_store import build_message, build_ticket
from conftest import NOW, ticket_payload


class FakeChatClient:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.requests = []

    def chat(self, messages, json_mode=False, max_tokens=1024):
        self.requests.append((messages, json_mode))
        if self.error is not None:
            raise self.error
        return self.reply


ANALYSIS = {
    "category": "billing",
    "priority": "high",
    "summary": "Customer was charged twice.",
    "suggestedResponse": "We will refund the duplicate charge.",
    "tags": ["billing", "refund", "duplicate", "card", "invoice", "extra"],
    "sentiment": "negative",
    "requiresEscalation": False,
}


class TestLLMTicketAnalyzer:
    def test_parses_camel_case_json(self):
        client = FakeChatClient(reply=json.dumps(ANALYSIS))
        analysis = LLMTicketAnalyzer(client).analyze("Charged twice", "My card was billed two times")
        assert analysis.category == TicketCategory.BILLING
        assert analysis.priority == TicketPriority.HIGH
        assert analysis.sentiment == Sentiment.NEGATIVE
        assert analysis.tags == ["billing", "refund", "duplicate", "card", "invoice"]
        messages, json_mode = client.requests[0]
        assert json_mode is True
        assert "Charged twice" in messages[-1]["content"]

    @pytest.mark.parametrize("reply", ["not json", json.dumps({**ANALYSIS, "category": "legal"})])
    def test_malformed_reply_raises(self, reply):
        with pytest.raises(ValueError):
            LLMTicketAnalyzer(FakeChatClient(reply=reply)).analyze("s", "d")


class TestSuggestedResponse:
    def _ticket(self):
        return build_ticket(ticket_payload(), now=NOW)

    def test_no_client_uses_template(self):
        ticket = self._ticket()
        text = generate_suggested_response(ticket, [], agent_name="Sarah Johnson")
        assert text == fallback_response(ticket, "Sarah Johnson")
        assert text.startswith("Dear Dana Lee,")

    def test_llm_draft_with_history(self):
        ticket = self._ticket()
        history = [
            build_message(ticket.id, "c", SenderType.CUSTOMER, "It still fails", now=NOW),
            build_message(ticket.id, "a", SenderType.AGENT, "Which version?", now=NOW),
        ]
        client = FakeChatClient(reply="  Hi Dana, please update to 2.1.  ")
        text = generate_suggested_response(ticket, history, agent_name="Mike Chen", client=client)
        assert text == "Hi Dana, please update to 2.1."
        messages, _ = client.requests[0]
        assert "Mike Chen" in messages[0]["content"]
        assert "Customer: It still fails\n\nAgent: Which version?" in messages[2]["content"]

    def test_llm_failure_falls_back(self):
        ticket = self._ticket()
        client = FakeChatClient(error=OSError("timed out"))
        assert generate_suggested_response(ticket, [], client=client) == fallback_response(ticket)
