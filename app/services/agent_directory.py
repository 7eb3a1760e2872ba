"""
Agent directory: support agents with category skills and ticket capacity.

Load (current_ticket_count) changes only through adjust_load / try_reserve, both atomic
per agent. In-memory backend uses a lock; Redis backend (support_agent:{id}, support_agents
set) uses WATCH/MULTI on the agent key.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Optional

from app.config import REDIS_URL
from app.models import AgentCreate, SupportAgent, TicketCategory, utcnow

logger = logging.getLogger(__name__)


# Default agents registered at startup (mirrors the seeded support team).
DEFAULT_AGENTS = [
    SupportAgent(
        id="agent-1",
        name="Sarah Johnson",
        email="sarah@support.com",
        skills=[TicketCategory.BILLING, TicketCategory.ACCOUNT, TicketCategory.GENERAL],
        max_tickets=10,
        current_ticket_count=3,
        is_available=True,
        is_online=True,
        average_response_time=15,
        satisfaction_score=4.8,
    ),
    SupportAgent(
        id="agent-2",
        name="Mike Chen",
        email="mike@support.com",
        skills=[TicketCategory.TECHNICAL, TicketCategory.BUG_REPORT, TicketCategory.FEATURE_REQUEST],
        max_tickets=8,
        current_ticket_count=5,
        is_available=True,
        is_online=True,
        average_response_time=20,
        satisfaction_score=4.6,
    ),
    SupportAgent(
        id="agent-3",
        name="Emily Davis",
        email="emily@support.com",
        skills=[TicketCategory.BILLING, TicketCategory.TECHNICAL, TicketCategory.ACCOUNT],
        max_tickets=12,
        current_ticket_count=8,
        is_available=True,
        is_online=False,
        average_response_time=12,
        satisfaction_score=4.9,
    ),
]


def by_load_ratio(agents: list[SupportAgent]) -> list[SupportAgent]:
    """Least-loaded first (current_ticket_count / max_tickets); stable on ties."""
    return sorted(agents, key=lambda a: a.load_ratio)


def _with_load(agent: SupportAgent, delta: int, enforce_capacity: bool) -> Optional[SupportAgent]:
    """Agent with load shifted by delta (clamped at 0), or None if capacity would be exceeded."""
    if enforce_capacity and delta > 0 and agent.current_ticket_count + delta > agent.max_tickets:
        return None
    return agent.model_copy(update={"current_ticket_count": max(0, agent.current_ticket_count + delta)})


def _merge_agent(agent: SupportAgent, fields: dict[str, Any]) -> SupportAgent:
    data = agent.model_dump()
    data.update({k: v for k, v in fields.items() if k not in ("id", "created_at", "current_ticket_count")})
    return SupportAgent.model_validate(data)


class AgentRepository(ABC):
    """Storage contract for support agents."""

    @abstractmethod
    def list_agents(self) -> list[SupportAgent]:
        ...

    @abstractmethod
    def get_agent(self, agent_id: str) -> Optional[SupportAgent]:
        ...

    @abstractmethod
    def save_agent(self, agent: SupportAgent) -> SupportAgent:
        """Insert or replace an agent record as-is (used for seeding and tests)."""

    @abstractmethod
    def delete_agent(self, agent_id: str) -> bool:
        """Remove the agent. Tickets keep their (now dangling) assigned_agent_id."""

    @abstractmethod
    def _modify(
        self, agent_id: str, fn: Callable[[SupportAgent], Optional[SupportAgent]]
    ) -> Optional[SupportAgent]:
        """Atomically replace the agent with fn(agent) unless fn returns None."""

    def create_agent(self, payload: AgentCreate, now: Optional[datetime] = None) -> SupportAgent:
        agent = SupportAgent(
            name=payload.name,
            email=payload.email,
            skills=list(dict.fromkeys(payload.skills)),
            max_tickets=payload.max_tickets,
            is_available=payload.is_available,
            is_online=payload.is_online,
            created_at=now or utcnow(),
        )
        self.save_agent(agent)
        logger.info("Agent %s (%s) created with skills %s.", agent.id, agent.name,
                    ", ".join(s.value for s in agent.skills))
        return agent

    def update_agent(self, agent_id: str, fields: dict[str, Any]) -> Optional[SupportAgent]:
        return self._modify(agent_id, lambda a: _merge_agent(a, fields))

    def find_available_for_category(self, category: TicketCategory) -> list[SupportAgent]:
        """Available, online agents skilled in `category` with spare capacity, least-loaded first."""
        return by_load_ratio([
            a for a in self.list_agents()
            if a.is_available and a.is_online and category in a.skills and a.has_capacity
        ])

    def adjust_load(self, agent_id: str, delta: int) -> Optional[SupportAgent]:
        """Shift an agent's load by delta, clamped at 0. Does not check capacity."""
        return self._modify(agent_id, lambda a: _with_load(a, delta, enforce_capacity=False))

    def try_reserve(self, agent_id: str) -> Optional[SupportAgent]:
        """Increment load only if the agent is still under capacity. None if not reserved."""
        return self._modify(agent_id, lambda a: _with_load(a, 1, enforce_capacity=True))

    def set_load(self, agent_id: str, load: int) -> Optional[SupportAgent]:
        return self._modify(
            agent_id, lambda a: a.model_copy(update={"current_ticket_count": max(0, load)})
        )

    def seed_default_agents(self) -> int:
        """Register default agents only if they don't exist. Preserves load on restart."""
        seeded = 0
        for agent in DEFAULT_AGENTS:
            if self.get_agent(agent.id) is None:
                self.save_agent(agent.model_copy(update={"created_at": utcnow()}))
                seeded += 1
        if seeded:
            logger.info("Seeded %d default agents (existing agents left unchanged).", seeded)
        return seeded


class InMemoryAgentRepository(AgentRepository):
    def __init__(self) -> None:
        self._agents: dict[str, SupportAgent] = {}
        self._lock = threading.Lock()

    def list_agents(self) -> list[SupportAgent]:
        with self._lock:
            return list(self._agents.values())

    def get_agent(self, agent_id: str) -> Optional[SupportAgent]:
        with self._lock:
            return self._agents.get(agent_id)

    def save_agent(self, agent: SupportAgent) -> SupportAgent:
        with self._lock:
            self._agents[agent.id] = agent
        return agent

    def delete_agent(self, agent_id: str) -> bool:
        with self._lock:
            return self._agents.pop(agent_id, None) is not None

    def _modify(
        self, agent_id: str, fn: Callable[[SupportAgent], Optional[SupportAgent]]
    ) -> Optional[SupportAgent]:
        with self._lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return None
            updated = fn(agent)
            if updated is not None:
                self._agents[agent_id] = updated
            return updated


AGENT_PREFIX = "support_agent:"
AGENTS_SET = "support_agents"


class RedisAgentRepository(AgentRepository):
    def __init__(self, client=None, url: str = REDIS_URL) -> None:
        self._client = client
        self._url = url

    def _redis(self):
        import redis
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    @staticmethod
    def _key(agent_id: str) -> str:
        return f"{AGENT_PREFIX}{agent_id}"

    def list_agents(self) -> list[SupportAgent]:
        r = self._redis()
        ids = sorted(r.smembers(AGENTS_SET))
        if not ids:
            return []
        raws = r.mget([self._key(aid) for aid in ids])
        agents = [SupportAgent.model_validate_json(raw) for raw in raws if raw]
        return sorted(agents, key=lambda a: a.created_at)

    def get_agent(self, agent_id: str) -> Optional[SupportAgent]:
        raw = self._redis().get(self._key(agent_id))
        if not raw:
            return None
        return SupportAgent.model_validate_json(raw)

    def save_agent(self, agent: SupportAgent) -> SupportAgent:
        pipe = self._redis().pipeline()
        pipe.set(self._key(agent.id), agent.model_dump_json())
        pipe.sadd(AGENTS_SET, agent.id)
        pipe.execute()
        return agent

    def delete_agent(self, agent_id: str) -> bool:
        pipe = self._redis().pipeline()
        pipe.delete(self._key(agent_id))
        pipe.srem(AGENTS_SET, agent_id)
        deleted, _ = pipe.execute()
        return bool(deleted)

    def _modify(
        self, agent_id: str, fn: Callable[[SupportAgent], Optional[SupportAgent]]
    ) -> Optional[SupportAgent]:
        key = self._key(agent_id)

        def _apply(pipe) -> Optional[SupportAgent]:
            raw = pipe.get(key)
            if not raw:
                return None
            updated = fn(SupportAgent.model_validate_json(raw))
            if updated is None:
                return None
            pipe.multi()
            pipe.set(key, updated.model_dump_json())
            return updated

        return self._redis().transaction(_apply, key, value_from_callable=True)
