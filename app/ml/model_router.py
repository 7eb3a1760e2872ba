"""
Analyzer router with timeout and circuit breaker.

Every call either returns the configured analyzer's result or, on error, timeout or an
open circuit, the default analysis (ticket's own category/priority). It never raises.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from enum import Enum
from typing import Callable, Protocol

from app.config import ANALYZER_TIMEOUT_SECONDS, CIRCUIT_COOLDOWN_SECONDS, CIRCUIT_HALF_OPEN_PROBES
from app.models import Sentiment, Ticket, TicketAnalysis

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "Unable to analyze ticket automatically"
FALLBACK_RESPONSE = "Thank you for reaching out. A support agent will review your request shortly."


class TicketAnalyzer(Protocol):
    def analyze(self, subject: str, description: str) -> TicketAnalysis:
        ...


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def fallback_analysis(ticket: Ticket) -> TicketAnalysis:
    """Default analysis used whenever classification fails: keeps the ticket's own values."""
    return TicketAnalysis(
        category=ticket.category,
        priority=ticket.priority,
        summary=FALLBACK_SUMMARY,
        suggested_response=FALLBACK_RESPONSE,
        tags=[],
        sentiment=Sentiment.NEUTRAL,
        requires_escalation=False,
    )


class AnalyzerRouter:
    """Wraps a TicketAnalyzer; one failure opens the circuit for the cooldown period."""

    def __init__(
        self,
        analyzer: TicketAnalyzer,
        timeout_seconds: float = ANALYZER_TIMEOUT_SECONDS,
        cooldown_seconds: float = CIRCUIT_COOLDOWN_SECONDS,
        half_open_probes: int = CIRCUIT_HALF_OPEN_PROBES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.analyzer = analyzer
        self.timeout_seconds = timeout_seconds
        self.cooldown_seconds = cooldown_seconds
        self.half_open_probes = half_open_probes
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="analyzer")
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._probes = 0

    def _allow_request(self) -> bool:
        with self._lock:
            if self._state == CircuitState.OPEN:
                if self._clock() - self._opened_at < self.cooldown_seconds:
                    return False
                self._state = CircuitState.HALF_OPEN
                self._probes = 0
                logger.info("Analyzer circuit half-open; probing.")
            return True

    def _record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.HALF_OPEN:
                return
            self._probes += 1
            if self._probes >= self.half_open_probes:
                self._state = CircuitState.CLOSED
                self._probes = 0
                logger.info("Analyzer circuit closed after %d successful probes.", self.half_open_probes)

    def _record_failure(self, reason: str) -> None:
        with self._lock:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            self._probes = 0
        logger.warning("Analyzer circuit open: %s; using fallback analysis.", reason)

    def analyze(self, ticket: Ticket) -> TicketAnalysis:
        if not self._allow_request():
            logger.debug("Analyzer circuit open; fallback analysis for ticket %s.", ticket.id)
            return fallback_analysis(ticket)
        future = None
        try:
            future = self._executor.submit(self.analyzer.analyze, ticket.subject, ticket.description)
            analysis = TicketAnalysis.model_validate(future.result(timeout=self.timeout_seconds))
        except FutureTimeout:
            future.cancel()
            self._record_failure(f"timeout after {self.timeout_seconds:.1f}s")
            return fallback_analysis(ticket)
        except Exception as e:
            self._record_failure(f"error {e!r}")
            return fallback_analysis(ticket)
        self._record_success()
        return analysis

    def get_state(self) -> dict:
        """Circuit breaker state for /health."""
        with self._lock:
            return {
                "state": self._state.value,
                "opened_at": self._opened_at,
                "half_open_probes": self._probes,
            }
