"""Ordered escalation rule set. Order matters: the scanner stops at the first rule that fires."""

import threading
from typing import Iterable, Optional

from app.models import EscalationRule, TicketCategory, TicketPriority

DEFAULT_RULES = [
    EscalationRule(
        id="rule-1",
        name="Urgent tickets auto-escalate",
        priority=TicketPriority.URGENT,
        category=None,
        trigger_after_minutes=15,
        escalate_to_level=2,
        notify_management=True,
        is_active=True,
    ),
    EscalationRule(
        id="rule-2",
        name="High priority billing issues",
        priority=TicketPriority.HIGH,
        category=TicketCategory.BILLING,
        trigger_after_minutes=30,
        escalate_to_level=1,
        notify_management=False,
        is_active=True,
    ),
    EscalationRule(
        id="rule-3",
        name="Unresponded technical tickets",
        priority=TicketPriority.MEDIUM,
        category=TicketCategory.TECHNICAL,
        trigger_after_minutes=60,
        escalate_to_level=1,
        notify_management=False,
        is_active=True,
    ),
]


class EscalationRuleSet:
    """Rules kept in insertion order; reads return snapshots."""

    def __init__(self, rules: Optional[Iterable[EscalationRule]] = None) -> None:
        self._rules: list[EscalationRule] = list(DEFAULT_RULES if rules is None else rules)
        self._lock = threading.Lock()

    def list_rules(self) -> list[EscalationRule]:
        with self._lock:
            return list(self._rules)

    def list_active(self) -> list[EscalationRule]:
        with self._lock:
            return [r for r in self._rules if r.is_active]
