"""Dashboard counters derived from ticket and agent state (read-only)."""

from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from app.models import Stats, TERMINAL_STATUSES, TicketStatus, utcnow
from app.services.agent_directory import AgentRepository
from app.services.ticket_store import TicketRepository

RESOLVED_WINDOW = timedelta(hours=24)


def compute_stats(
    tickets: TicketRepository,
    agents: AgentRepository,
    now: Optional[datetime] = None,
) -> Stats:
    now = now or utcnow()
    all_tickets = tickets.all_tickets()
    all_agents = agents.list_agents()
    statuses = Counter(t.status for t in all_tickets)

    response_minutes = [
        (t.first_response_at - t.created_at).total_seconds() / 60.0
        for t in all_tickets
        if t.first_response_at is not None
    ]
    # Half-up rounding; the mean is never negative.
    average_response = int(sum(response_minutes) / len(response_minutes) + 0.5) if response_minutes else 0

    return Stats(
        total_tickets=len(all_tickets),
        open_tickets=statuses[TicketStatus.OPEN],
        in_progress_tickets=statuses[TicketStatus.IN_PROGRESS],
        escalated_tickets=statuses[TicketStatus.ESCALATED],
        resolved_today=sum(
            1 for t in all_tickets
            if t.resolved_at is not None and now - t.resolved_at < RESOLVED_WINDOW
        ),
        average_response_time=average_response,
        tickets_by_category=dict(Counter(t.category.value for t in all_tickets)),
        tickets_by_priority=dict(Counter(t.priority.value for t in all_tickets)),
        agents_online=sum(1 for a in all_agents if a.is_online),
        total_agents=len(all_agents),
        sla_breaches=sum(
            1 for t in all_tickets
            if t.sla_deadline is not None and t.sla_deadline < now and t.status not in TERMINAL_STATUSES
        ),
    )
