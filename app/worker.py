"""
ARQ background worker: periodic escalation scan over the shared Redis ticket store.
Escalated tickets are published to the activity channel; rules with notify_management
also fire the escalation webhook.
"""

import logging
from dataclasses import replace

from arq import cron, run_worker
from arq.connections import RedisSettings

from app.activity import publish_event
from app.config import ESCALATION_SCAN_INTERVAL_MINUTES, REDIS_CONN_TIMEOUT, REDIS_URL, STORE_BACKEND
from app.models import EscalationRule, Ticket
from app.services.backend import get_rule_set, get_ticket_repo
from app.services.escalation import check_escalations
from app.webhook import trigger_escalation_webhook

logger = logging.getLogger(__name__)


def _scan_minutes(interval: int) -> set[int]:
    interval = max(1, min(60, interval))
    return set(range(0, 60, interval))


async def scan_escalations(ctx: dict) -> int:
    """ARQ cron job: escalate overdue tickets; returns how many were escalated."""
    notify: list[Ticket] = []

    def _on_escalated(ticket: Ticket, rule: EscalationRule) -> None:
        publish_event(
            "ticket_escalated",
            {
                "ticket_id": ticket.id,
                "rule_id": rule.id,
                "level": ticket.escalation_level,
                "priority": ticket.priority.value,
            },
        )
        if rule.notify_management:
            notify.append(ticket)

    try:
        escalated = check_escalations(get_ticket_repo(), get_rule_set(), on_escalated=_on_escalated)
    except Exception as e:
        logger.exception("Escalation scan failed: %s", e)
        raise
    for ticket in notify:
        await trigger_escalation_webhook(ticket)
    if escalated:
        logger.info("Escalation scan: %d ticket(s) escalated.", len(escalated))
    else:
        logger.debug("Escalation scan: nothing to escalate.")
    return len(escalated)


async def startup(ctx: dict) -> None:
    if STORE_BACKEND != "redis":
        logger.warning(
            "STORE_BACKEND=%s: the worker scans its own in-process store, not the API's. "
            "Set STORE_BACKEND=redis to share tickets.",
            STORE_BACKEND,
        )


class WorkerSettings:
    functions = [scan_escalations]
    cron_jobs = [
        cron(
            scan_escalations,
            minute=_scan_minutes(ESCALATION_SCAN_INTERVAL_MINUTES),
            run_at_startup=True,
        ),
    ]
    on_startup = startup
    redis_settings = replace(
        RedisSettings.from_dsn(REDIS_URL),
        conn_timeout=REDIS_CONN_TIMEOUT,
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Worker starting (Redis: %s).", REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL)
    run_worker(WorkerSettings)
