"""
Escalation: the periodic rule scanner and manual escalation.

The scanner never touches the agent directory. It is invoked on demand (API) or by
the worker's cron job and runs to completion.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from app.errors import InvalidTransitionError, TicketValidationError
from app.models import EscalationRule, SenderType, Ticket, TicketStatus, utcnow
from app.services.escalation_rules import EscalationRuleSet
from app.services.ticket_store import TicketRepository, merge_ticket

logger = logging.getLogger(__name__)

# Statuses the scanner leaves alone.
SCAN_SKIP_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.ESCALATED})

SYSTEM_SENDER = "system"
MANUAL_REASON = "Manual escalation"


def ticket_age_minutes(ticket: Ticket, now: datetime) -> float:
    return (now - ticket.created_at).total_seconds() / 60.0


def first_triggered_rule(
    ticket: Ticket,
    rules: list[EscalationRule],
    now: datetime,
) -> Optional[EscalationRule]:
    """First rule (in order) that matches the ticket, is due, and would raise its level."""
    age = ticket_age_minutes(ticket, now)
    for rule in rules:
        if not rule.matches(ticket):
            continue
        if age >= rule.trigger_after_minutes and ticket.escalation_level < rule.escalate_to_level:
            return rule
    return None


def _escalation_note(level: int, reason: str) -> str:
    return f"Ticket escalated to level {level}. Reason: {reason}"


def check_escalations(
    tickets: TicketRepository,
    rules: EscalationRuleSet,
    now: Optional[datetime] = None,
    on_escalated: Optional[Callable[[Ticket, EscalationRule], None]] = None,
) -> list[Ticket]:
    """
    Escalate every overdue open ticket; returns the tickets escalated in this pass.
    Conditions are re-checked against the stored ticket at write time, so a ticket resolved
    or escalated further since the scan started is skipped.
    """
    now = now or utcnow()
    active = rules.list_active()
    escalated: list[Ticket] = []
    if not active:
        return escalated
    for ticket in tickets.all_tickets():
        if ticket.status in SCAN_SKIP_STATUSES:
            continue
        rule = first_triggered_rule(ticket, active, now)
        if rule is None:
            continue

        def _escalate(current: Ticket, rule: EscalationRule = rule) -> Optional[Ticket]:
            if current.status in SCAN_SKIP_STATUSES:
                return None
            if current.escalation_level >= rule.escalate_to_level:
                return None
            return merge_ticket(
                current,
                {
                    "status": TicketStatus.ESCALATED,
                    "escalation_level": rule.escalate_to_level,
                    "escalation_reason": f"Auto-escalated: {rule.name}",
                },
                now,
            )

        updated = tickets.modify_ticket(ticket.id, _escalate)
        if updated is None:
            logger.debug("Ticket %s changed since the scan started; skipped.", ticket.id)
            continue
        tickets.create_message(
            ticket.id,
            SYSTEM_SENDER,
            SenderType.SYSTEM,
            _escalation_note(rule.escalate_to_level, rule.name),
            is_internal=True,
            now=now,
        )
        logger.info("Ticket %s auto-escalated to level %d by rule %s.",
                    ticket.id, rule.escalate_to_level, rule.id)
        escalated.append(updated)
        if on_escalated is not None:
            on_escalated(updated, rule)
    return escalated


def escalate_ticket(
    tickets: TicketRepository,
    ticket_id: str,
    reason: Optional[str] = None,
    level: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[Ticket]:
    """Manually escalate a non-terminal ticket. Level defaults to one above the current one."""
    now = now or utcnow()
    reason = reason or MANUAL_REASON

    def _escalate(current: Ticket) -> Ticket:
        if current.is_terminal:
            raise InvalidTransitionError(f"cannot escalate a {current.status.value} ticket")
        new_level = level if level is not None else current.escalation_level + 1
        if new_level < current.escalation_level:
            raise TicketValidationError(
                f"escalation level cannot decrease ({current.escalation_level} -> {new_level})"
            )
        return merge_ticket(
            current,
            {
                "status": TicketStatus.ESCALATED,
                "escalation_reason": reason,
                "escalation_level": new_level,
            },
            now,
        )

    updated = tickets.modify_ticket(ticket_id, _escalate)
    if updated is None:
        return None
    tickets.create_message(
        ticket_id, SYSTEM_SENDER, SenderType.SYSTEM,
        _escalation_note(updated.escalation_level, reason),
        is_internal=True, now=now,
    )
    logger.info("Ticket %s manually escalated to level %d.", ticket_id, updated.escalation_level)
    return updated
