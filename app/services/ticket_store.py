"""
Ticket store: tickets and their append-only message threads.

Two backends share one interface:
  - InMemoryTicketRepository: dicts guarded by a per-instance lock.
  - RedisTicketRepository: ticket:{id} (JSON), tickets:index (sorted set by created_at)
    and ticket_messages:{id} (list of JSON messages, append order).
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from app.config import REDIS_URL
from app.errors import TicketValidationError
from app.models import (
    SenderType,
    Ticket,
    TicketCreate,
    TicketMessage,
    TicketPriority,
    TicketStatus,
    new_id,
    utcnow,
)

# Hours until the first-response deadline, by priority.
SLA_HOURS: dict[TicketPriority, int] = {
    TicketPriority.URGENT: 1,
    TicketPriority.HIGH: 4,
    TicketPriority.MEDIUM: 24,
    TicketPriority.LOW: 72,
}

# Fields fixed at creation; update_ticket never overwrites them.
IMMUTABLE_FIELDS = ("id", "description", "created_at")


def sla_deadline_for(priority: TicketPriority, created_at: datetime) -> datetime:
    return created_at + timedelta(hours=SLA_HOURS[priority])


def build_ticket(payload: TicketCreate, now: Optional[datetime] = None) -> Ticket:
    """New open ticket from a creation payload; SLA deadline derived from priority."""
    now = now or utcnow()
    return Ticket(
        id=new_id(),
        subject=payload.subject,
        description=payload.description,
        category=payload.category,
        priority=payload.priority,
        status=TicketStatus.OPEN,
        customer_id=payload.customer_id or f"customer-{int(now.timestamp() * 1000)}",
        customer_email=payload.customer_email,
        customer_name=payload.customer_name,
        sla_deadline=sla_deadline_for(payload.priority, now),
        created_at=now,
        updated_at=now,
    )


def merge_ticket(ticket: Ticket, fields: dict[str, Any], now: Optional[datetime] = None) -> Ticket:
    """
    Apply a partial update and bump updated_at.
    escalation_level may only grow and first_response_at, once set, is kept.
    """
    now = now or utcnow()
    new_level = fields.get("escalation_level")
    if new_level is not None and new_level < ticket.escalation_level:
        raise TicketValidationError(
            f"escalation level cannot decrease ({ticket.escalation_level} -> {new_level})"
        )
    data = ticket.model_dump()
    data.update({k: v for k, v in fields.items() if k not in IMMUTABLE_FIELDS})
    if ticket.first_response_at is not None:
        data["first_response_at"] = ticket.first_response_at
    data["updated_at"] = max(now, ticket.created_at)
    return Ticket.model_validate(data)


def build_message(
    ticket_id: str,
    sender_id: str,
    sender_type: SenderType,
    content: str,
    is_internal: bool = False,
    now: Optional[datetime] = None,
) -> TicketMessage:
    return TicketMessage(
        ticket_id=ticket_id,
        sender_id=sender_id,
        sender_type=sender_type,
        content=content,
        is_internal=is_internal,
        created_at=now or utcnow(),
    )


def _newest_first(tickets: list[Ticket]) -> list[Ticket]:
    return sorted(tickets, key=lambda t: t.created_at, reverse=True)


class TicketRepository(ABC):
    """Storage contract for tickets and messages."""

    @abstractmethod
    def create_ticket(self, payload: TicketCreate, now: Optional[datetime] = None) -> Ticket:
        ...

    @abstractmethod
    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        ...

    @abstractmethod
    def all_tickets(self) -> list[Ticket]:
        """All tickets, newest first."""

    def list_tickets(
        self,
        status: Optional[TicketStatus] = None,
        agent_id: Optional[str] = None,
    ) -> list[Ticket]:
        """Tickets filtered by status or else by assigned agent, newest first."""
        tickets = self.all_tickets()
        if status is not None:
            return [t for t in tickets if t.status == status]
        if agent_id is not None:
            return [t for t in tickets if t.assigned_agent_id == agent_id]
        return tickets

    @abstractmethod
    def modify_ticket(
        self, ticket_id: str, fn: Callable[[Ticket], Optional[Ticket]]
    ) -> Optional[Ticket]:
        """
        Atomically replace the ticket with fn(ticket) unless fn returns None.
        fn sees the stored ticket, so conditions checked inside it hold at write time.
        """

    def update_ticket(
        self, ticket_id: str, fields: dict[str, Any], now: Optional[datetime] = None
    ) -> Optional[Ticket]:
        return self.modify_ticket(ticket_id, lambda t: merge_ticket(t, fields, now))

    @abstractmethod
    def delete_ticket(self, ticket_id: str) -> bool:
        """Remove the ticket and its messages. Returns False if it did not exist."""

    @abstractmethod
    def create_message(
        self,
        ticket_id: str,
        sender_id: str,
        sender_type: SenderType,
        content: str,
        is_internal: bool = False,
        now: Optional[datetime] = None,
    ) -> Optional[TicketMessage]:
        """Append to the ticket's thread. None if the ticket does not exist."""

    @abstractmethod
    def list_messages(self, ticket_id: str) -> list[TicketMessage]:
        ...


class InMemoryTicketRepository(TicketRepository):
    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._messages: dict[str, list[TicketMessage]] = {}
        self._lock = threading.Lock()

    def create_ticket(self, payload: TicketCreate, now: Optional[datetime] = None) -> Ticket:
        ticket = build_ticket(payload, now)
        with self._lock:
            self._tickets[ticket.id] = ticket
            self._messages[ticket.id] = []
        return ticket

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        with self._lock:
            return self._tickets.get(ticket_id)

    def all_tickets(self) -> list[Ticket]:
        with self._lock:
            # Reverse insertion order first so ties on created_at list the latest insert first.
            tickets = list(reversed(list(self._tickets.values())))
        return _newest_first(tickets)

    def modify_ticket(
        self, ticket_id: str, fn: Callable[[Ticket], Optional[Ticket]]
    ) -> Optional[Ticket]:
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is None:
                return None
            updated = fn(ticket)
            if updated is not None:
                self._tickets[ticket_id] = updated
            return updated

    def delete_ticket(self, ticket_id: str) -> bool:
        with self._lock:
            self._messages.pop(ticket_id, None)
            return self._tickets.pop(ticket_id, None) is not None

    def create_message(
        self,
        ticket_id: str,
        sender_id: str,
        sender_type: SenderType,
        content: str,
        is_internal: bool = False,
        now: Optional[datetime] = None,
    ) -> Optional[TicketMessage]:
        message = build_message(ticket_id, sender_id, sender_type, content, is_internal, now)
        with self._lock:
            if ticket_id not in self._tickets:
                return None
            self._messages.setdefault(ticket_id, []).append(message)
        return message

    def list_messages(self, ticket_id: str) -> list[TicketMessage]:
        with self._lock:
            messages = list(self._messages.get(ticket_id, []))
        return sorted(messages, key=lambda m: m.created_at)


TICKET_PREFIX = "ticket:"
TICKET_INDEX_ZSET = "tickets:index"
TICKET_MESSAGES_PREFIX = "ticket_messages:"


class RedisTicketRepository(TicketRepository):
    """Redis-backed store; per-ticket read-modify-write runs as a WATCH/MULTI transaction."""

    def __init__(self, client=None, url: str = REDIS_URL) -> None:
        self._client = client
        self._url = url

    def _redis(self):
        import redis
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    @staticmethod
    def _key(ticket_id: str) -> str:
        return f"{TICKET_PREFIX}{ticket_id}"

    @staticmethod
    def _messages_key(ticket_id: str) -> str:
        return f"{TICKET_MESSAGES_PREFIX}{ticket_id}"

    def create_ticket(self, payload: TicketCreate, now: Optional[datetime] = None) -> Ticket:
        ticket = build_ticket(payload, now)
        pipe = self._redis().pipeline()
        pipe.set(self._key(ticket.id), ticket.model_dump_json())
        pipe.zadd(TICKET_INDEX_ZSET, {ticket.id: ticket.created_at.timestamp()})
        pipe.execute()
        return ticket

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        raw = self._redis().get(self._key(ticket_id))
        if not raw:
            return None
        return Ticket.model_validate_json(raw)

    def all_tickets(self) -> list[Ticket]:
        r = self._redis()
        ids = r.zrevrange(TICKET_INDEX_ZSET, 0, -1)
        if not ids:
            return []
        raws = r.mget([self._key(tid) for tid in ids])
        return _newest_first([Ticket.model_validate_json(raw) for raw in raws if raw])

    def modify_ticket(
        self, ticket_id: str, fn: Callable[[Ticket], Optional[Ticket]]
    ) -> Optional[Ticket]:
        key = self._key(ticket_id)

        def _apply(pipe) -> Optional[Ticket]:
            raw = pipe.get(key)
            if not raw:
                return None
            updated = fn(Ticket.model_validate_json(raw))
            if updated is None:
                return None
            pipe.multi()
            pipe.set(key, updated.model_dump_json())
            return updated

        return self._redis().transaction(_apply, key, value_from_callable=True)

    def delete_ticket(self, ticket_id: str) -> bool:
        pipe = self._redis().pipeline()
        pipe.delete(self._key(ticket_id))
        pipe.delete(self._messages_key(ticket_id))
        pipe.zrem(TICKET_INDEX_ZSET, ticket_id)
        deleted, _, _ = pipe.execute()
        return bool(deleted)

    def create_message(
        self,
        ticket_id: str,
        sender_id: str,
        sender_type: SenderType,
        content: str,
        is_internal: bool = False,
        now: Optional[datetime] = None,
    ) -> Optional[TicketMessage]:
        key = self._key(ticket_id)
        message = build_message(ticket_id, sender_id, sender_type, content, is_internal, now)

        def _append(pipe) -> Optional[TicketMessage]:
            if not pipe.exists(key):
                return None
            pipe.multi()
            pipe.rpush(self._messages_key(ticket_id), message.model_dump_json())
            return message

        return self._redis().transaction(_append, key, value_from_callable=True)

    def list_messages(self, ticket_id: str) -> list[TicketMessage]:
        raws = self._redis().lrange(self._messages_key(ticket_id), 0, -1)
        messages = [TicketMessage.model_validate_json(raw) for raw in raws]
        return sorted(messages, key=lambda m: m.created_at)
