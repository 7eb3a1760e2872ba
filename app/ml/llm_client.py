"""
LLM-backed ticket analysis and reply drafting over an OpenAI-compatible
chat completions endpoint.
"""

import json
import logging
import ssl
import urllib.request
from typing import Any

from app.config import ANALYZER_TIMEOUT_SECONDS, LLM_API_KEY, LLM_BASE_URL, LLM_MODEL
from app.models import TicketAnalysis

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = """You are an AI support ticket analyzer. Analyze the support ticket and provide:
1. Category (one of: billing, technical, account, feature_request, bug_report, general)
2. Priority (one of: low, medium, high, urgent)
3. A brief summary (1-2 sentences)
4. A suggested response to the customer
5. Relevant tags (up to 5)
6. Customer sentiment (positive, neutral, negative, or frustrated)
7. Whether it requires escalation to a supervisor, and why

Urgency indicators: "urgent", "asap", "immediately" mean high/urgent priority; account
security issues are urgent; payment failures are high; feature requests are low.

Respond in JSON with exactly these fields:
{"category": "...", "priority": "...", "summary": "...", "suggestedResponse": "...",
 "tags": ["..."], "sentiment": "...", "requiresEscalation": false, "escalationReason": "..."}"""

RESPONDER_SYSTEM_PROMPT = """You are {agent_name}, a professional and empathetic customer support agent.
Write a helpful, friendly reply to the customer: acknowledge the concern, give clear and
actionable information in simple language, offer next steps, keep it concise, and sign off."""


class LLMClient:
    """Minimal chat completions client (stdlib HTTP, JSON in/out)."""

    def __init__(
        self,
        api_key: str = LLM_API_KEY,
        base_url: str = LLM_BASE_URL,
        model: str = LLM_MODEL,
        timeout: float = ANALYZER_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        req = urllib.request.Request(
            f"{self.base_url}{path}",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            method="POST",
        )
        ctx = ssl.create_default_context()
        with urllib.request.urlopen(req, timeout=self.timeout, context=ctx) as resp:
            return json.loads(resp.read().decode("utf-8"))

    def chat(self, messages: list[dict[str, str]], json_mode: bool = False, max_tokens: int = 1024) -> str:
        """Return the first choice's content. Raises on transport errors or an empty reply."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_completion_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        body = self._post("/chat/completions", payload)
        content = (body.get("choices") or [{}])[0].get("message", {}).get("content")
        if not content:
            raise ValueError("No response from LLM")
        return content


class LLMTicketAnalyzer:
    """Analyzer that asks the LLM for a JSON classification; malformed replies raise."""

    def __init__(self, client: LLMClient) -> None:
        self.client = client

    def analyze(self, subject: str, description: str) -> TicketAnalysis:
        content = self.client.chat(
            [
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": f"Subject: {subject}\n\nDescription: {description}"},
            ],
            json_mode=True,
        )
        analysis = TicketAnalysis.model_validate_json(content)
        return analysis.model_copy(update={"tags": analysis.tags[:5]})


def generate_support_response(
    client: LLMClient,
    subject: str,
    description: str,
    conversation_history: list[str],
    agent_name: str,
) -> str:
    """Draft the next agent reply for a ticket conversation."""
    messages = [
        {"role": "system", "content": RESPONDER_SYSTEM_PROMPT.format(agent_name=agent_name)},
        {"role": "user", "content": f"Original ticket:\nSubject: {subject}\n{description}"},
    ]
    if conversation_history:
        messages.append({
            "role": "user",
            "content": "Previous conversation:\n" + "\n\n".join(conversation_history),
        })
    messages.append({
        "role": "user",
        "content": "Generate a professional response to continue helping this customer.",
    })
    return client.chat(messages).strip()
