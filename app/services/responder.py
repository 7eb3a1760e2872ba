"""Suggested agent replies: LLM draft when configured, templated reply otherwise."""

import logging
from typing import Optional

from app.ml.llm_client import LLMClient, generate_support_response
from app.models import SenderType, Ticket, TicketMessage

logger = logging.getLogger(__name__)

DEFAULT_AGENT_NAME = "Support Agent"

_SPEAKERS = {
    SenderType.CUSTOMER: "Customer",
    SenderType.AGENT: "Agent",
    SenderType.SYSTEM: "System",
}


def conversation_history(messages: list[TicketMessage]) -> list[str]:
    return [f"{_SPEAKERS[m.sender_type]}: {m.content}" for m in messages]


def fallback_response(ticket: Ticket, agent_name: str = DEFAULT_AGENT_NAME) -> str:
    return (
        f"Dear {ticket.customer_name},\n\n"
        "Thank you for reaching out to our support team. We have received your inquiry "
        f'regarding "{ticket.subject}" and are looking into it.\n\n'
        "We will get back to you as soon as possible.\n\n"
        f"Best regards,\n{agent_name}"
    )


def generate_suggested_response(
    ticket: Ticket,
    messages: list[TicketMessage],
    agent_name: str = DEFAULT_AGENT_NAME,
    client: Optional[LLMClient] = None,
) -> str:
    """Never raises: LLM failures fall back to the templated reply."""
    if client is None:
        return fallback_response(ticket, agent_name)
    try:
        draft = generate_support_response(
            client, ticket.subject, ticket.description, conversation_history(messages), agent_name
        )
    except Exception as e:
        logger.warning("Response generation failed for ticket %s: %s", ticket.id, e)
        return fallback_response(ticket, agent_name)
    return draft or fallback_response(ticket, agent_name)
