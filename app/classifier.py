"""Baseline analyzer: keyword category routing + regex-based priority detection."""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Optional

from app.config import SENTIMENT_TIMEOUT_SECONDS
from app.models import Sentiment, TicketAnalysis, TicketCategory, TicketPriority
from app.sentiment import baseline_sentiment, classify_sentiment

logger = logging.getLogger(__name__)

# Category keywords (case-insensitive). First match wins in dict order.
CATEGORY_PATTERNS = {
    TicketCategory.BILLING: [
        r"\b(?:bill|billing|invoice|payment|charged?|refund|subscription|receipt|pricing)\b",
        r"\b(?:overcharged?|double charged?|charged twice|credit card)\b",
    ],
    TicketCategory.ACCOUNT: [
        r"\b(?:log ?in|sign ?in|password|locked|2fa|two-factor|username|account|profile)\b",
    ],
    TicketCategory.BUG_REPORT: [
        r"\b(?:bug|crash(?:es|ed)?|exception|glitch|stack ?trace|regression)\b",
        r"\b(?:error message|throws an error|broken)\b",
    ],
    TicketCategory.TECHNICAL: [
        r"\b(?:api|integration|slow|timeout|install|setup|configure|sync|connection|server|error)\b",
        r"\b(?:not working|doesn't work|technical)\b",
    ],
    TicketCategory.FEATURE_REQUEST: [
        r"\b(?:feature|would be nice|suggestion|enhancement|please add|add support)\b",
    ],
}

# Priority: first matching level wins, urgent before high.
PRIORITY_PATTERNS = {
    TicketPriority.URGENT: [
        r"\b(?:urgent|asap|as soon as possible|emergency|immediately|right now)\b",
        r"\b(?:hacked|fraud|security breach|locked out|account locked|data loss)\b",
    ],
    TicketPriority.HIGH: [
        r"\b(?:payment failed|charged twice|double charged?|outage|down|critical)\b",
        r"\b(?:cannot|can't|unable to|broken|not working)\b",
    ],
}

MAX_TAGS = 5
MAX_SUMMARY_CHARS = 160

_category_res = {
    category: [re.compile(p, re.IGNORECASE) for p in patterns]
    for category, patterns in CATEGORY_PATTERNS.items()
}
_priority_res = {
    priority: [re.compile(p, re.IGNORECASE) for p in patterns]
    for priority, patterns in PRIORITY_PATTERNS.items()
}

SUGGESTED_RESPONSES = {
    TicketCategory.BILLING: (
        "Thank you for reaching out about your billing concern. We are reviewing your account "
        "and recent charges and will follow up with the details shortly."
    ),
    TicketCategory.ACCOUNT: (
        "Thank you for contacting us about your account. For your security, we are verifying "
        "the account details and will help you regain access as quickly as possible."
    ),
    TicketCategory.BUG_REPORT: (
        "Thank you for reporting this issue. We have passed the details to our engineering team "
        "and will update you as soon as we know more."
    ),
    TicketCategory.TECHNICAL: (
        "Thank you for reaching out. A technical specialist is looking into the problem and "
        "will get back to you with next steps."
    ),
    TicketCategory.FEATURE_REQUEST: (
        "Thank you for the suggestion! We have shared your request with our product team."
    ),
    TicketCategory.GENERAL: (
        "Thank you for reaching out. A support agent will review your request shortly."
    ),
}


def _match_category(text: str) -> TicketCategory:
    """Classify ticket text into a category using keyword heuristics."""
    for category, patterns in _category_res.items():
        if any(p.search(text) for p in patterns):
            return category
    return TicketCategory.GENERAL


def _match_priority(text: str, category: TicketCategory) -> TicketPriority:
    for priority, patterns in _priority_res.items():
        if any(p.search(text) for p in patterns):
            return priority
    if category == TicketCategory.FEATURE_REQUEST:
        return TicketPriority.LOW
    return TicketPriority.MEDIUM


def _extract_tags(text: str) -> list[str]:
    """Distinct matched keywords, in order of appearance, capped at MAX_TAGS."""
    hits: list[tuple[int, str]] = []
    for patterns in list(_category_res.values()) + list(_priority_res.values()):
        for p in patterns:
            hits.extend((m.start(), m.group(0).lower()) for m in p.finditer(text))
    tags: list[str] = []
    for _, word in sorted(hits):
        tag = re.sub(r"\s+", "-", word)
        if tag not in tags:
            tags.append(tag)
    return tags[:MAX_TAGS]


def _summarize(subject: str, description: str) -> str:
    first_sentence = re.split(r"(?<=[.!?])\s+", description.strip(), maxsplit=1)[0]
    summary = f"{subject.strip()}: {first_sentence}" if first_sentence else subject.strip()
    if len(summary) > MAX_SUMMARY_CHARS:
        summary = summary[: MAX_SUMMARY_CHARS - 3].rstrip() + "..."
    return summary


class KeywordAnalyzer:
    """Offline ticket analyzer; also the default when no LLM is configured."""

    def __init__(
        self,
        sentiment: Optional[Callable[[str], Sentiment]] = None,
        sentiment_timeout_seconds: float = SENTIMENT_TIMEOUT_SECONDS,
    ) -> None:
        self._sentiment = sentiment or classify_sentiment
        self.sentiment_timeout_seconds = sentiment_timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sentiment")

    def _score_sentiment(self, text: str) -> Sentiment:
        """Sentiment within the time budget; a slow model (e.g. still loading) yields the baseline."""
        future = self._executor.submit(self._sentiment, text)
        try:
            return future.result(timeout=self.sentiment_timeout_seconds)
        except FutureTimeout:
            future.cancel()
            logger.info("Sentiment took over %.1fs; using regex baseline.", self.sentiment_timeout_seconds)
            return baseline_sentiment(text)

    def analyze(self, subject: str, description: str) -> TicketAnalysis:
        text = f"{subject} {description}"
        category = _match_category(text)
        priority = _match_priority(text, category)
        sentiment = self._score_sentiment(text)
        escalation_reason = None
        if priority == TicketPriority.URGENT:
            escalation_reason = "Urgent issue reported by customer"
        elif sentiment == Sentiment.FRUSTRATED:
            escalation_reason = "Customer appears frustrated"
        return TicketAnalysis(
            category=category,
            priority=priority,
            summary=_summarize(subject, description),
            suggested_response=SUGGESTED_RESPONSES[category],
            tags=_extract_tags(text),
            sentiment=sentiment,
            requires_escalation=escalation_reason is not None,
            escalation_reason=escalation_reason,
        )
