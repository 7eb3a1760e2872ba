"""
Agent directory: availability filtering, load accounting, capacity reservation, seeding.
Run: pytest tests/test_agent_directory.py -v
"""

import threading

import pytest

from app.models import AgentCreate, TicketCategory
from app.services.agent_directory import (
    DEFAULT_AGENTS,
    InMemoryAgentRepository,
    RedisAgentRepository,
    by_load_ratio,
)
from conftest import NOW, make_agent

B = TicketCategory.BILLING
T = TicketCategory.TECHNICAL


class TestByLoadRatio:
    def test_least_loaded_first(self):
        busy = make_agent("busy", [B], current_ticket_count=8, max_tickets=10)
        idle = make_agent("idle", [B], current_ticket_count=1, max_tickets=10)
        half = make_agent("half", [B], current_ticket_count=2, max_tickets=4)
        assert [a.id for a in by_load_ratio([busy, idle, half])] == ["idle", "half", "busy"]

    def test_ties_keep_input_order(self):
        a = make_agent("a", [B], current_ticket_count=1, max_tickets=2)
        b = make_agent("b", [B], current_ticket_count=5, max_tickets=10)
        assert [x.id for x in by_load_ratio([a, b])] == ["a", "b"]
        assert [x.id for x in by_load_ratio([b, a])] == ["b", "a"]


class _DirectoryContract:
    @pytest.fixture
    def repo(self):
        raise NotImplementedError

    def test_create_agent_defaults(self, repo):
        agent = repo.create_agent(
            AgentCreate(name="Pat", email="pat@support.com", skills=[B, B, T]), now=NOW
        )
        assert agent.skills == [B, T]
        assert agent.current_ticket_count == 0
        assert agent.max_tickets == 10
        assert agent.satisfaction_score == 5.0
        assert repo.get_agent(agent.id) == agent

    def test_find_available_filters_and_orders(self, repo):
        repo.save_agent(make_agent("full", [T], current_ticket_count=10, max_tickets=10))
        repo.save_agent(make_agent("offline", [T], is_online=False))
        repo.save_agent(make_agent("away", [T], is_available=False))
        repo.save_agent(make_agent("billing-only", [B]))
        repo.save_agent(make_agent("busy", [T], current_ticket_count=6))
        repo.save_agent(make_agent("idle", [T], current_ticket_count=1))
        assert [a.id for a in repo.find_available_for_category(T)] == ["idle", "busy"]

    def test_adjust_load_clamps_at_zero(self, repo):
        repo.save_agent(make_agent("a", [B], current_ticket_count=1))
        assert repo.adjust_load("a", -1).current_ticket_count == 0
        assert repo.adjust_load("a", -1).current_ticket_count == 0

    def test_adjust_load_ignores_capacity(self, repo):
        repo.save_agent(make_agent("a", [B], current_ticket_count=2, max_tickets=2))
        assert repo.adjust_load("a", 1).current_ticket_count == 3

    def test_try_reserve_respects_capacity(self, repo):
        repo.save_agent(make_agent("a", [B], current_ticket_count=1, max_tickets=2))
        assert repo.try_reserve("a").current_ticket_count == 2
        assert repo.try_reserve("a") is None
        assert repo.get_agent("a").current_ticket_count == 2

    def test_unknown_agent(self, repo):
        assert repo.get_agent("nobody") is None
        assert repo.adjust_load("nobody", 1) is None
        assert repo.try_reserve("nobody") is None
        assert repo.update_agent("nobody", {"name": "x"}) is None
        assert repo.delete_agent("nobody") is False

    def test_update_agent_cannot_touch_load_or_id(self, repo):
        repo.save_agent(make_agent("a", [B], current_ticket_count=4))
        updated = repo.update_agent(
            "a", {"id": "b", "current_ticket_count": 0, "is_online": False, "max_tickets": 6}
        )
        assert updated.id == "a"
        assert updated.current_ticket_count == 4
        assert updated.is_online is False
        assert updated.max_tickets == 6

    def test_delete_agent(self, repo):
        repo.save_agent(make_agent("a", [B]))
        assert repo.delete_agent("a") is True
        assert repo.get_agent("a") is None
        assert repo.list_agents() == []

    def test_seed_is_idempotent_and_keeps_load(self, repo):
        assert repo.seed_default_agents() == len(DEFAULT_AGENTS)
        repo.adjust_load("agent-1", 2)
        assert repo.seed_default_agents() == 0
        assert repo.get_agent("agent-1").current_ticket_count == 5
        assert {a.id for a in repo.list_agents()} == {"agent-1", "agent-2", "agent-3"}
        assert repo.get_agent("agent-3").is_online is False


class TestInMemoryAgentRepository(_DirectoryContract):
    @pytest.fixture
    def repo(self):
        return InMemoryAgentRepository()

    def test_concurrent_reservations_never_exceed_capacity(self, repo):
        repo.save_agent(make_agent("a", [B], current_ticket_count=0, max_tickets=5))
        results = []
        lock = threading.Lock()

        def reserve():
            got = repo.try_reserve("a")
            with lock:
                results.append(got is not None)

        threads = [threading.Thread(target=reserve) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sum(results) == 5
        assert repo.get_agent("a").current_ticket_count == 5

    def test_concurrent_adjustments_are_not_lost(self, repo):
        repo.save_agent(make_agent("a", [B], current_ticket_count=0, max_tickets=100))
        threads = [threading.Thread(target=repo.adjust_load, args=("a", 1)) for _ in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert repo.get_agent("a").current_ticket_count == 50


class TestRedisAgentRepository(_DirectoryContract):
    @pytest.fixture
    def repo(self):
        fakeredis = pytest.importorskip("fakeredis")
        return RedisAgentRepository(client=fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True))
