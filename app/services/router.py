"""
Ticket intake routing: analyze -> classify -> pick best agent -> reserve load -> persist.

Agent selection:
  - Skilled, available, online agents under capacity, least-loaded first.
  - For high/urgent tickets that pool is re-ranked by satisfaction_score * (1 - load ratio).
  - With no skilled agent free, any online agent under capacity, least-loaded first.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np

from app.ml.model_router import AnalyzerRouter
from app.models import SupportAgent, Ticket, TicketAnalysis, TicketCategory, TicketPriority
from app.services.agent_directory import AgentRepository, by_load_ratio
from app.services.ticket_store import TicketRepository

logger = logging.getLogger(__name__)

WEIGHTED_PRIORITIES = frozenset({TicketPriority.URGENT, TicketPriority.HIGH})
# Re-selection attempts when a chosen agent fills up before its load is reserved.
MAX_RESERVE_ATTEMPTS = 5


@dataclass
class RoutingResult:
    ticket: Ticket
    analysis: TicketAnalysis
    assigned_agent: Optional[SupportAgent]


def _weighted_scores(agents: list[SupportAgent]) -> np.ndarray:
    """Quality-with-spare-capacity score per agent."""
    satisfaction = np.array([a.satisfaction_score for a in agents], dtype=np.float64)
    load = np.array([a.load_ratio for a in agents], dtype=np.float64)
    return satisfaction * (1.0 - load)


def rank_agents(
    category: TicketCategory,
    priority: TicketPriority,
    agents: AgentRepository,
) -> list[SupportAgent]:
    """Eligible agents for a ticket, best first. Empty if nobody can take it."""
    candidates = agents.find_available_for_category(category)
    if not candidates:
        return by_load_ratio([a for a in agents.list_agents() if a.is_online and a.has_capacity])
    if priority in WEIGHTED_PRIORITIES:
        # Stable sort keeps least-loaded order between equal scores.
        order = np.argsort(-_weighted_scores(candidates), kind="stable")
        candidates = [candidates[int(i)] for i in order]
    return candidates


def find_best_agent_for_ticket(
    category: TicketCategory,
    priority: TicketPriority,
    agents: AgentRepository,
) -> Optional[SupportAgent]:
    ranked = rank_agents(category, priority, agents)
    return ranked[0] if ranked else None


def _reserve_best_agent(
    category: TicketCategory,
    priority: TicketPriority,
    agents: AgentRepository,
) -> Optional[SupportAgent]:
    """Pick the best agent and atomically take one unit of its capacity."""
    for _ in range(MAX_RESERVE_ATTEMPTS):
        best = find_best_agent_for_ticket(category, priority, agents)
        if best is None:
            return None
        reserved = agents.try_reserve(best.id)
        if reserved is not None:
            return reserved
        logger.info("Agent %s reached capacity before reservation; re-selecting.", best.id)
    logger.warning("Could not reserve an agent for %s/%s after %d attempts.",
                   category.value, priority.value, MAX_RESERVE_ATTEMPTS)
    return None


def route_ticket(
    ticket: Ticket,
    tickets: TicketRepository,
    agents: AgentRepository,
    analyzer: AnalyzerRouter,
    now: Optional[datetime] = None,
) -> RoutingResult:
    """
    Classify a newly created ticket and assign it. Call exactly once per ticket:
    a second call re-runs classification and reserves agent capacity again.

    The AI classification replaces the ticket's working category/priority.
    """
    analysis = analyzer.analyze(ticket)
    agent = _reserve_best_agent(analysis.category, analysis.priority, agents)
    fields = {
        "ai_suggested_category": analysis.category,
        "ai_suggested_priority": analysis.priority,
        "ai_summary": analysis.summary,
        "ai_suggested_response": analysis.suggested_response,
        "tags": list(analysis.tags),
        "category": analysis.category,
        "priority": analysis.priority,
        "assigned_agent_id": agent.id if agent else None,
    }
    try:
        updated = tickets.update_ticket(ticket.id, fields, now=now)
    except Exception:
        if agent is not None:
            agents.adjust_load(agent.id, -1)
        raise
    if updated is None:
        if agent is not None:
            agents.adjust_load(agent.id, -1)
        logger.warning("Ticket %s was removed during routing; released reservation.", ticket.id)
        return RoutingResult(ticket=ticket, analysis=analysis, assigned_agent=None)

    if agent is not None:
        logger.info("Routed ticket %s (%s/%s) to agent %s.",
                    ticket.id, analysis.category.value, analysis.priority.value, agent.id)
    else:
        logger.warning("No agent available for ticket %s (%s/%s); left unassigned.",
                       ticket.id, analysis.category.value, analysis.priority.value)
    return RoutingResult(ticket=updated, analysis=analysis, assigned_agent=agent)
