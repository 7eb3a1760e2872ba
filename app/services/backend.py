"""
Process-wide service wiring: repositories, rule set, analyzer router and LLM client.
Built lazily from app.config; configure() swaps any of them (tests, alternate backends).
"""

import logging
from typing import Optional

from app.classifier import KeywordAnalyzer
from app.config import ANALYZER_BACKEND, LLM_API_KEY, REDIS_URL, STORE_BACKEND
from app.ml.llm_client import LLMClient, LLMTicketAnalyzer
from app.ml.model_router import AnalyzerRouter
from app.services.agent_directory import AgentRepository, InMemoryAgentRepository, RedisAgentRepository
from app.services.escalation_rules import EscalationRuleSet
from app.services.ticket_store import InMemoryTicketRepository, RedisTicketRepository, TicketRepository

logger = logging.getLogger(__name__)

_UNSET = object()

_tickets: Optional[TicketRepository] = None
_agents: Optional[AgentRepository] = None
_rules: Optional[EscalationRuleSet] = None
_analyzer: Optional[AnalyzerRouter] = None
_llm_client = _UNSET


def _build_llm_client() -> Optional[LLMClient]:
    return LLMClient() if LLM_API_KEY else None


def _build_analyzer() -> AnalyzerRouter:
    if ANALYZER_BACKEND == "llm":
        client = get_llm_client()
        if client is not None:
            return AnalyzerRouter(LLMTicketAnalyzer(client))
        logger.warning("ANALYZER_BACKEND=llm but LLM_API_KEY is empty; using keyword analyzer.")
    return AnalyzerRouter(KeywordAnalyzer())


def get_ticket_repo() -> TicketRepository:
    global _tickets
    if _tickets is None:
        _tickets = RedisTicketRepository(url=REDIS_URL) if STORE_BACKEND == "redis" else InMemoryTicketRepository()
    return _tickets


def get_agent_repo() -> AgentRepository:
    global _agents
    if _agents is None:
        _agents = RedisAgentRepository(url=REDIS_URL) if STORE_BACKEND == "redis" else InMemoryAgentRepository()
    return _agents


def get_rule_set() -> EscalationRuleSet:
    global _rules
    if _rules is None:
        _rules = EscalationRuleSet()
    return _rules


def get_analyzer() -> AnalyzerRouter:
    global _analyzer
    if _analyzer is None:
        _analyzer = _build_analyzer()
    return _analyzer


def get_llm_client() -> Optional[LLMClient]:
    global _llm_client
    if _llm_client is _UNSET:
        _llm_client = _build_llm_client()
    return _llm_client


def configure(
    tickets: Optional[TicketRepository] = None,
    agents: Optional[AgentRepository] = None,
    rules: Optional[EscalationRuleSet] = None,
    analyzer: Optional[AnalyzerRouter] = None,
    llm_client=_UNSET,
) -> None:
    """Replace any of the wired services; omitted ones are left as they are."""
    global _tickets, _agents, _rules, _analyzer, _llm_client
    if tickets is not None:
        _tickets = tickets
    if agents is not None:
        _agents = agents
    if rules is not None:
        _rules = rules
    if analyzer is not None:
        _analyzer = analyzer
    if llm_client is not _UNSET:
        _llm_client = llm_client


def reset() -> None:
    """Drop all wired services; the next access rebuilds them from config."""
    global _tickets, _agents, _rules, _analyzer, _llm_client
    _tickets = _agents = _rules = _analyzer = None
    _llm_client = _UNSET
