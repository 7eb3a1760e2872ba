"""Data models for the support ticket routing and escalation service."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current time (UTC)."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class CamelModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire (both accepted on input)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TicketCategory(str, Enum):
    """Supported ticket categories."""

    BILLING = "billing"
    TECHNICAL = "technical"
    ACCOUNT = "account"
    FEATURE_REQUEST = "feature_request"
    BUG_REPORT = "bug_report"
    GENERAL = "general"


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING_CUSTOMER = "pending_customer"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    CLOSED = "closed"


TERMINAL_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED})


class SenderType(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    SYSTEM = "system"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    FRUSTRATED = "frustrated"


# --- Stored records ---


class Ticket(CamelModel):
    """A unit of customer support work tracked through the status lifecycle."""

    id: str = Field(default_factory=new_id, description="Opaque ticket identifier")
    subject: str
    description: str
    category: TicketCategory = TicketCategory.GENERAL
    priority: TicketPriority = TicketPriority.MEDIUM
    status: TicketStatus = TicketStatus.OPEN
    customer_id: str
    customer_email: str
    customer_name: str
    assigned_agent_id: Optional[str] = Field(None, description="Weak reference into the agent directory")
    ai_suggested_category: Optional[TicketCategory] = None
    ai_suggested_priority: Optional[TicketPriority] = None
    ai_summary: Optional[str] = None
    ai_suggested_response: Optional[str] = None
    escalation_reason: Optional[str] = None
    escalation_level: int = Field(default=0, ge=0)
    sla_deadline: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TicketMessage(CamelModel):
    """One entry in a ticket's conversation thread (append-only)."""

    id: str = Field(default_factory=new_id)
    ticket_id: str
    sender_id: str
    sender_type: SenderType
    content: str
    is_internal: bool = Field(default=False, description="Visible to agents only")
    created_at: datetime = Field(default_factory=utcnow)


class SupportAgent(CamelModel):
    """A support agent with category skills and ticket capacity."""

    id: str = Field(default_factory=new_id)
    name: str
    email: str
    skills: list[TicketCategory] = Field(default_factory=list)
    max_tickets: int = Field(default=10, ge=1)
    current_ticket_count: int = Field(default=0, ge=0)
    is_available: bool = True
    is_online: bool = True
    average_response_time: float = Field(default=0.0, ge=0.0, description="Minutes")
    satisfaction_score: float = Field(default=5.0, ge=0.0, le=5.0)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def load_ratio(self) -> float:
        return self.current_ticket_count / self.max_tickets

    @property
    def has_capacity(self) -> bool:
        return self.current_ticket_count < self.max_tickets


class EscalationRule(CamelModel):
    """Escalate unattended tickets of a priority (and optional category) after a delay."""

    id: str = Field(default_factory=new_id)
    name: str
    priority: TicketPriority
    category: Optional[TicketCategory] = Field(None, description="None matches any category")
    trigger_after_minutes: int = Field(..., ge=0)
    escalate_to_level: int = Field(..., ge=1)
    notify_management: bool = False
    is_active: bool = True

    def matches(self, ticket: Ticket) -> bool:
        if self.category is not None and self.category != ticket.category:
            return False
        return self.priority == ticket.priority


class TicketAnalysis(CamelModel):
    """Classification returned by a ticket analyzer."""

    category: TicketCategory
    priority: TicketPriority
    summary: str
    suggested_response: str
    tags: list[str] = Field(default_factory=list)
    sentiment: Sentiment = Sentiment.NEUTRAL
    requires_escalation: bool = False
    escalation_reason: Optional[str] = None


class Stats(CamelModel):
    """Dashboard counters derived from current ticket and agent state."""

    total_tickets: int
    open_tickets: int
    in_progress_tickets: int
    escalated_tickets: int
    resolved_today: int
    average_response_time: int = Field(..., description="Minutes from creation to first agent reply")
    tickets_by_category: dict[str, int]
    tickets_by_priority: dict[str, int]
    agents_online: int
    total_agents: int
    sla_breaches: int


# --- Request payloads ---


class TicketCreate(CamelModel):
    subject: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    customer_email: str = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1)
    customer_id: Optional[str] = None
    category: TicketCategory = TicketCategory.GENERAL
    priority: TicketPriority = TicketPriority.MEDIUM


class TicketUpdate(CamelModel):
    """Partial ticket update. Description, timestamps and assignment are not patchable."""

    subject: Optional[str] = Field(None, min_length=1)
    category: Optional[TicketCategory] = None
    priority: Optional[TicketPriority] = None
    status: Optional[TicketStatus] = None
    tags: Optional[list[str]] = None
    escalation_reason: Optional[str] = None
    escalation_level: Optional[int] = Field(None, ge=0)


class MessageCreate(CamelModel):
    content: str = Field(..., min_length=1)
    sender_id: str = Field(..., min_length=1)
    sender_type: SenderType
    is_internal: bool = False


class AssignRequest(CamelModel):
    agent_id: str = Field(..., min_length=1)


class EscalateRequest(CamelModel):
    reason: Optional[str] = None
    level: Optional[int] = Field(None, ge=1)


class AgentCreate(CamelModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    skills: list[TicketCategory] = Field(..., min_length=1)
    max_tickets: int = Field(default=10, ge=1)
    is_available: bool = True
    is_online: bool = True


class AgentUpdate(CamelModel):
    """Partial agent update. Load changes only through assignment."""

    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = Field(None, min_length=1)
    skills: Optional[list[TicketCategory]] = None
    max_tickets: Optional[int] = Field(None, ge=1)
    is_available: Optional[bool] = None
    is_online: Optional[bool] = None
    average_response_time: Optional[float] = Field(None, ge=0.0)
    satisfaction_score: Optional[float] = Field(None, ge=0.0, le=5.0)


# --- Responses ---


class AgentSummary(CamelModel):
    id: str
    name: str


class TicketCreated(CamelModel):
    """Response for POST /tickets: the routed ticket, its analysis and the chosen agent."""

    ticket: Ticket
    analysis: TicketAnalysis
    assigned_agent: Optional[AgentSummary] = None


class TicketDetail(Ticket):
    """Ticket plus its thread; a dangling agent reference resolves to no agent."""

    messages: list[TicketMessage] = Field(default_factory=list)
    assigned_agent: Optional[AgentSummary] = None


class AgentDetail(SupportAgent):
    assigned_tickets: list[Ticket] = Field(default_factory=list)


class SuggestedResponse(CamelModel):
    suggested_response: str


class EscalationCheckResult(CamelModel):
    escalated_count: int
    tickets: list[Ticket]
