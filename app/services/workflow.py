"""
Ticket workflow operations behind the HTTP API: intake, updates with status-transition
checks, thread replies, manual assignment and agent load reconciliation.
"""

import logging
from datetime import datetime
from typing import Optional

from app.errors import InvalidTransitionError
from app.ml.model_router import AnalyzerRouter, fallback_analysis
from app.models import (
    AgentDetail,
    AgentSummary,
    MessageCreate,
    SenderType,
    SupportAgent,
    Ticket,
    TicketAnalysis,
    TicketCreate,
    TicketDetail,
    TicketMessage,
    TicketStatus,
    TicketUpdate,
    utcnow,
)
from app.services.agent_directory import AgentRepository
from app.services.escalation import SYSTEM_SENDER
from app.services.router import RoutingResult, route_ticket
from app.services.ticket_store import TicketRepository, merge_ticket

logger = logging.getLogger(__name__)

S = TicketStatus
ALLOWED_TRANSITIONS: dict[TicketStatus, frozenset] = {
    S.OPEN: frozenset({S.IN_PROGRESS, S.PENDING_CUSTOMER, S.ESCALATED, S.RESOLVED}),
    S.IN_PROGRESS: frozenset({S.OPEN, S.PENDING_CUSTOMER, S.ESCALATED, S.RESOLVED}),
    S.PENDING_CUSTOMER: frozenset({S.IN_PROGRESS, S.ESCALATED, S.RESOLVED}),
    S.ESCALATED: frozenset({S.IN_PROGRESS, S.PENDING_CUSTOMER, S.RESOLVED}),
    S.RESOLVED: frozenset({S.CLOSED}),
    S.CLOSED: frozenset(),
}

# Nullable fields a PATCH may clear explicitly.
CLEARABLE_FIELDS = frozenset({"escalation_reason"})


def check_transition(current: TicketStatus, new: TicketStatus) -> None:
    if new != current and new not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"cannot move ticket from {current.value} to {new.value}")


def submit_ticket(
    payload: TicketCreate,
    tickets: TicketRepository,
    agents: AgentRepository,
    analyzer: AnalyzerRouter,
    now: Optional[datetime] = None,
) -> RoutingResult:
    """
    Create a ticket, record the description as the first customer message, then route it.
    Creation always succeeds: a routing failure leaves the ticket unassigned.
    """
    now = now or utcnow()
    ticket = tickets.create_ticket(payload, now=now)
    tickets.create_message(
        ticket.id, ticket.customer_id, SenderType.CUSTOMER, ticket.description, now=now
    )
    logger.info("Ticket %s created for %s.", ticket.id, ticket.customer_email)
    try:
        return route_ticket(ticket, tickets, agents, analyzer, now=now)
    except Exception:
        logger.exception("Routing failed for ticket %s; leaving it unassigned.", ticket.id)
        return RoutingResult(
            ticket=tickets.get_ticket(ticket.id) or ticket,
            analysis=fallback_analysis(ticket),
            assigned_agent=None,
        )


def update_ticket(
    tickets: TicketRepository,
    ticket_id: str,
    update: TicketUpdate,
    now: Optional[datetime] = None,
) -> Optional[Ticket]:
    """Apply a partial update; resolving a ticket for the first time stamps resolved_at."""
    now = now or utcnow()
    fields = {
        k: v for k, v in update.model_dump(exclude_unset=True).items()
        if v is not None or k in CLEARABLE_FIELDS
    }
    new_status = fields.get("status")

    def _apply(current: Ticket) -> Ticket:
        changes = dict(fields)
        if new_status is not None:
            check_transition(current.status, new_status)
            if new_status == TicketStatus.RESOLVED and current.resolved_at is None:
                changes["resolved_at"] = now
        return merge_ticket(current, changes, now)

    return tickets.modify_ticket(ticket_id, _apply)


def _record_first_response(current: Ticket, now: datetime) -> Optional[Ticket]:
    if current.first_response_at is not None:
        return None
    fields: dict = {"first_response_at": now}
    if current.status == TicketStatus.OPEN:
        fields["status"] = TicketStatus.IN_PROGRESS
    return merge_ticket(current, fields, now)


def add_message(
    tickets: TicketRepository,
    ticket_id: str,
    payload: MessageCreate,
    now: Optional[datetime] = None,
) -> Optional[TicketMessage]:
    """Append to the thread; the first agent reply stamps first_response_at and starts work."""
    now = now or utcnow()
    message = tickets.create_message(
        ticket_id, payload.sender_id, payload.sender_type, payload.content,
        is_internal=payload.is_internal, now=now,
    )
    if message is None:
        return None
    if payload.sender_type == SenderType.AGENT:
        tickets.modify_ticket(ticket_id, lambda t: _record_first_response(t, now))
    return message


def assign_ticket(
    tickets: TicketRepository,
    agents: AgentRepository,
    ticket: Ticket,
    agent: SupportAgent,
    now: Optional[datetime] = None,
) -> Optional[Ticket]:
    """
    Manually (re)assign a ticket. Capacity is not checked here; only automatic routing
    enforces max_tickets. Load moves from the previous agent to the new one.
    """
    now = now or utcnow()
    previous: dict[str, Optional[str]] = {}

    def _assign(current: Ticket) -> Ticket:
        previous["id"] = current.assigned_agent_id
        fields: dict = {"assigned_agent_id": agent.id}
        if current.status == TicketStatus.OPEN:
            fields["status"] = TicketStatus.IN_PROGRESS
        return merge_ticket(current, fields, now)

    updated = tickets.modify_ticket(ticket.id, _assign)
    if updated is None:
        return None
    previous_id = previous["id"]
    if previous_id != agent.id:
        if previous_id:
            agents.adjust_load(previous_id, -1)
        agents.adjust_load(agent.id, 1)
    tickets.create_message(
        ticket.id, SYSTEM_SENDER, SenderType.SYSTEM, f"Ticket assigned to {agent.name}",
        is_internal=True, now=now,
    )
    logger.info("Ticket %s assigned to agent %s (previous: %s).", ticket.id, agent.id, previous_id)
    return updated


def reanalyze_ticket(
    tickets: TicketRepository,
    analyzer: AnalyzerRouter,
    ticket: Ticket,
    now: Optional[datetime] = None,
) -> TicketAnalysis:
    """Refresh AI suggestions and tags; the working category/priority stay as they are."""
    analysis = analyzer.analyze(ticket)
    tickets.update_ticket(
        ticket.id,
        {
            "ai_suggested_category": analysis.category,
            "ai_suggested_priority": analysis.priority,
            "ai_summary": analysis.summary,
            "ai_suggested_response": analysis.suggested_response,
            "tags": list(analysis.tags),
        },
        now=now,
    )
    return analysis


def resolve_agent(agents: AgentRepository, agent_id: Optional[str]) -> Optional[SupportAgent]:
    """Look up an assignee; a dangling reference reads as unassigned."""
    if not agent_id:
        return None
    return agents.get_agent(agent_id)


def ticket_detail(tickets: TicketRepository, agents: AgentRepository, ticket: Ticket) -> TicketDetail:
    agent = resolve_agent(agents, ticket.assigned_agent_id)
    return TicketDetail(
        **ticket.model_dump(),
        messages=tickets.list_messages(ticket.id),
        assigned_agent=AgentSummary(id=agent.id, name=agent.name) if agent else None,
    )


def agent_detail(tickets: TicketRepository, agent: SupportAgent) -> AgentDetail:
    return AgentDetail(**agent.model_dump(), assigned_tickets=tickets.list_tickets(agent_id=agent.id))


def reconcile_agent_loads(tickets: TicketRepository, agents: AgentRepository) -> int:
    """
    Set each agent's load to the number of non-terminal tickets assigned to it.
    Returns the number of agents whose load changed.
    """
    open_counts: dict[str, int] = {}
    for t in tickets.all_tickets():
        if t.assigned_agent_id and not t.is_terminal:
            open_counts[t.assigned_agent_id] = open_counts.get(t.assigned_agent_id, 0) + 1
    changed = 0
    for agent in agents.list_agents():
        expected = open_counts.get(agent.id, 0)
        if agent.current_ticket_count != expected:
            agents.set_load(agent.id, expected)
            changed += 1
    if changed:
        logger.info("Reconciled load for %d agents.", changed)
    return changed
