"""Shared fixtures: in-memory repositories, a fixed clock and stub analyzers."""

import os

# Read by app.config at import time: keep the transformer and webhooks out of tests.
os.environ["USE_TRANSFORMER_SENTIMENT"] = "0"
os.environ["WEBHOOK_URL"] = ""

import time
from datetime import datetime, timezone

import pytest

from app.classifier import KeywordAnalyzer
from app.ml.model_router import AnalyzerRouter
from app.models import (
    Sentiment,
    SupportAgent,
    TicketAnalysis,
    TicketCategory,
    TicketCreate,
    TicketPriority,
)
from app.sentiment import baseline_sentiment
from app.services.agent_directory import InMemoryAgentRepository
from app.services.escalation_rules import EscalationRuleSet
from app.services.ticket_store import InMemoryTicketRepository

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class StubAnalyzer:
    """Returns a fixed classification and counts calls."""

    def __init__(
        self,
        category: TicketCategory = TicketCategory.TECHNICAL,
        priority: TicketPriority = TicketPriority.HIGH,
    ) -> None:
        self.category = category
        self.priority = priority
        self.calls = 0

    def analyze(self, subject: str, description: str) -> TicketAnalysis:
        self.calls += 1
        return TicketAnalysis(
            category=self.category,
            priority=self.priority,
            summary=f"Summary of {subject}",
            suggested_response="We are on it.",
            tags=["stub"],
            sentiment=Sentiment.NEGATIVE,
            requires_escalation=False,
        )


class FailingAnalyzer:
    def __init__(self) -> None:
        self.calls = 0

    def analyze(self, subject: str, description: str) -> TicketAnalysis:
        self.calls += 1
        raise RuntimeError("analyzer unavailable")


class SlowAnalyzer(StubAnalyzer):
    def __init__(self, delay: float = 0.5) -> None:
        super().__init__()
        self.delay = delay

    def analyze(self, subject: str, description: str) -> TicketAnalysis:
        time.sleep(self.delay)
        return super().analyze(subject, description)


def ticket_payload(**overrides) -> TicketCreate:
    data = {
        "subject": "Cannot connect to the API",
        "description": "Our integration times out on every request.",
        "customer_email": "dana@example.com",
        "customer_name": "Dana Lee",
        "category": TicketCategory.GENERAL,
        "priority": TicketPriority.MEDIUM,
    }
    data.update(overrides)
    return TicketCreate(**data)


def make_agent(agent_id: str, skills: list[TicketCategory], **overrides) -> SupportAgent:
    data = {
        "id": agent_id,
        "name": f"Agent {agent_id}",
        "email": f"{agent_id}@support.com",
        "skills": skills,
        "max_tickets": 10,
        "current_ticket_count": 0,
        "satisfaction_score": 4.5,
        "created_at": NOW,
    }
    data.update(overrides)
    return SupportAgent(**data)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def tickets() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def agents() -> InMemoryAgentRepository:
    return InMemoryAgentRepository()


@pytest.fixture
def rules() -> EscalationRuleSet:
    return EscalationRuleSet()


@pytest.fixture
def keyword_router() -> AnalyzerRouter:
    return AnalyzerRouter(KeywordAnalyzer(sentiment=baseline_sentiment), timeout_seconds=5)


@pytest.fixture
def client():
    """TestClient over fresh in-memory services; startup seeds the default agents."""
    from fastapi.testclient import TestClient

    from app import activity
    from app.main import app
    from app.services import backend

    backend.configure(
        tickets=InMemoryTicketRepository(),
        agents=InMemoryAgentRepository(),
        rules=EscalationRuleSet(),
        analyzer=AnalyzerRouter(KeywordAnalyzer(sentiment=baseline_sentiment), timeout_seconds=5),
        llm_client=None,
    )
    activity.clear()
    with TestClient(app) as c:
        yield c
    backend.reset()
    activity.clear()
