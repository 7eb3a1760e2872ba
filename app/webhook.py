"""
Slack/Discord-style webhook notifications for new tickets, agent replies and escalations.
Uses WEBHOOK_URL from config; no-op if unset. Failures are logged, never raised.
"""

import asyncio
import json
import logging
import ssl
import urllib.request
from typing import Any, Optional

from app.config import WEBHOOK_URL
from app.models import Ticket, TicketMessage

logger = logging.getLogger(__name__)


def _build_payload(title: str, fields: dict[str, str]) -> dict[str, Any]:
    """Slack-compatible payload: plain-text fallback plus one markdown section."""
    body = "\n".join(f"*{name}:* {value}" for name, value in fields.items())
    return {
        "text": title,
        "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": f"*{title}*\n{body}"}}],
    }


def _do_post(url: str, payload: dict[str, Any]) -> None:
    """Synchronous POST (run in thread)."""
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    ctx = ssl.create_default_context()
    with urllib.request.urlopen(req, timeout=5, context=ctx):
        pass


async def _send(payload: dict[str, Any], url: Optional[str] = None) -> bool:
    url = WEBHOOK_URL if url is None else url
    if not url:
        return False
    try:
        await asyncio.to_thread(_do_post, url, payload)
    except Exception as e:
        logger.warning("Webhook notification failed: %s", e)
        return False
    return True


async def trigger_ticket_created_webhook(ticket: Ticket, agent_name: Optional[str] = None) -> bool:
    return await _send(_build_payload(
        f"New support ticket: {ticket.subject}",
        {
            "Ticket": f"`{ticket.id}`",
            "Customer": f"{ticket.customer_name} <{ticket.customer_email}>",
            "Category": ticket.category.value,
            "Priority": ticket.priority.value,
            "Assigned to": agent_name or "unassigned",
        },
    ))


async def trigger_agent_reply_webhook(ticket: Ticket, message: TicketMessage) -> bool:
    """Customer-visible agent replies only."""
    if message.is_internal:
        return False
    return await _send(_build_payload(
        f"Re: {ticket.subject} - Support Update",
        {
            "Ticket": f"`{ticket.id}`",
            "Customer": ticket.customer_email,
            "Reply": message.content,
        },
    ))


async def trigger_escalation_webhook(ticket: Ticket) -> bool:
    return await _send(_build_payload(
        f"Ticket escalated to level {ticket.escalation_level}: {ticket.subject}",
        {
            "Ticket": f"`{ticket.id}`",
            "Priority": ticket.priority.value,
            "Reason": ticket.escalation_reason or "n/a",
            "SLA deadline": ticket.sla_deadline.isoformat() if ticket.sla_deadline else "n/a",
        },
    ))
