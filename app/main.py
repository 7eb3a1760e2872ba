"""REST API for the support ticket service: tickets, threads, agents, escalations and stats."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import sentiment
from app.activity import emit as activity_emit, get_recent as activity_get_recent, start_redis_subscriber
from app.config import CORS_ORIGINS, SEED_DEFAULT_AGENTS, STORE_BACKEND
from app.errors import InvalidTransitionError, TicketValidationError
from app.models import (
    AgentCreate,
    AgentDetail,
    AgentSummary,
    AgentUpdate,
    AssignRequest,
    EscalateRequest,
    EscalationCheckResult,
    EscalationRule,
    MessageCreate,
    SenderType,
    Stats,
    SuggestedResponse,
    SupportAgent,
    Ticket,
    TicketAnalysis,
    TicketCreate,
    TicketCreated,
    TicketDetail,
    TicketMessage,
    TicketStatus,
    TicketUpdate,
)
from app.services import workflow
from app.services.backend import (
    get_agent_repo,
    get_analyzer,
    get_llm_client,
    get_rule_set,
    get_ticket_repo,
)
from app.services.escalation import check_escalations, escalate_ticket
from app.services.responder import DEFAULT_AGENT_NAME, generate_suggested_response
from app.services.stats import compute_stats
from app.webhook import (
    trigger_agent_reply_webhook,
    trigger_escalation_webhook,
    trigger_ticket_created_webhook,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if SEED_DEFAULT_AGENTS:
        try:
            get_agent_repo().seed_default_agents()
        except Exception as e:
            logger.warning("Could not seed default agents (Redis down?): %s", e)
    if STORE_BACKEND == "redis":
        start_redis_subscriber()
    # Load the sentiment model before serving so the first ticket does not pay for it.
    await asyncio.to_thread(sentiment.warm_up)
    yield


app = FastAPI(
    title="Support Ticket Service",
    description="Ticket intake with AI triage, skill-based routing, SLA escalation and stats.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(TicketValidationError)
async def ticket_validation_handler(request: Request, exc: TicketValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _ticket_or_404(ticket_id: str) -> Ticket:
    ticket = get_ticket_repo().get_ticket(ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


def _agent_or_404(agent_id: str) -> SupportAgent:
    agent = get_agent_repo().get_agent(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


# --- Tickets ---


@app.get("/tickets", response_model=list[Ticket])
def list_tickets(
    status: Optional[TicketStatus] = None,
    agent_id: Optional[str] = Query(None, alias="agentId"),
) -> list[Ticket]:
    """Tickets newest first, filtered by status if given, otherwise by assigned agent if given."""
    return get_ticket_repo().list_tickets(status=status, agent_id=agent_id)


@app.get("/tickets/{ticket_id}", response_model=TicketDetail)
def get_ticket(ticket_id: str) -> TicketDetail:
    ticket = _ticket_or_404(ticket_id)
    return workflow.ticket_detail(get_ticket_repo(), get_agent_repo(), ticket)


@app.post("/tickets", status_code=201, response_model=TicketCreated)
def create_ticket(payload: TicketCreate, background_tasks: BackgroundTasks) -> TicketCreated:
    """
    Create a ticket, analyze it and route it to the best available agent.
    Analyzer failures degrade to the fallback analysis; the ticket is always created.
    """
    result = workflow.submit_ticket(payload, get_ticket_repo(), get_agent_repo(), get_analyzer())
    agent = result.assigned_agent
    activity_emit(
        "ticket_created",
        {
            "ticket_id": result.ticket.id,
            "category": result.ticket.category.value,
            "priority": result.ticket.priority.value,
            "agent_id": agent.id if agent else None,
        },
    )
    background_tasks.add_task(trigger_ticket_created_webhook, result.ticket, agent.name if agent else None)
    return TicketCreated(
        ticket=result.ticket,
        analysis=result.analysis,
        assigned_agent=AgentSummary(id=agent.id, name=agent.name) if agent else None,
    )


@app.patch("/tickets/{ticket_id}", response_model=Ticket)
def patch_ticket(ticket_id: str, payload: TicketUpdate) -> Ticket:
    updated = workflow.update_ticket(get_ticket_repo(), ticket_id, payload)
    if updated is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    activity_emit("ticket_updated", {"ticket_id": ticket_id, "status": updated.status.value})
    return updated


@app.delete("/tickets/{ticket_id}", status_code=204)
def delete_ticket(ticket_id: str) -> Response:
    """Delete a ticket and its thread. Agent load is not released (see /agents/loads/reconcile)."""
    if not get_ticket_repo().delete_ticket(ticket_id):
        raise HTTPException(status_code=404, detail="Ticket not found")
    activity_emit("ticket_deleted", {"ticket_id": ticket_id})
    return Response(status_code=204)


@app.get("/tickets/{ticket_id}/messages", response_model=list[TicketMessage])
def list_messages(ticket_id: str) -> list[TicketMessage]:
    _ticket_or_404(ticket_id)
    return get_ticket_repo().list_messages(ticket_id)


@app.post("/tickets/{ticket_id}/messages", status_code=201, response_model=TicketMessage)
def add_message(ticket_id: str, payload: MessageCreate, background_tasks: BackgroundTasks) -> TicketMessage:
    """Append to the thread. The first agent reply records first response time."""
    tickets = get_ticket_repo()
    message = workflow.add_message(tickets, ticket_id, payload)
    if message is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    activity_emit(
        "message_added",
        {"ticket_id": ticket_id, "sender_type": message.sender_type.value, "is_internal": message.is_internal},
    )
    if message.sender_type == SenderType.AGENT and not message.is_internal:
        ticket = tickets.get_ticket(ticket_id)
        if ticket is not None:
            background_tasks.add_task(trigger_agent_reply_webhook, ticket, message)
    return message


@app.post("/tickets/{ticket_id}/assign", response_model=Ticket)
def assign_ticket(ticket_id: str, payload: AssignRequest) -> Ticket:
    """Manually assign (or reassign) a ticket; the agent's capacity is not checked."""
    ticket = _ticket_or_404(ticket_id)
    agent = _agent_or_404(payload.agent_id)
    updated = workflow.assign_ticket(get_ticket_repo(), get_agent_repo(), ticket, agent)
    if updated is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    activity_emit("ticket_assigned", {"ticket_id": ticket_id, "agent_id": agent.id})
    return updated


@app.post("/tickets/{ticket_id}/escalate", response_model=Ticket)
def escalate(
    ticket_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[EscalateRequest] = None,
) -> Ticket:
    payload = payload or EscalateRequest()
    updated = escalate_ticket(get_ticket_repo(), ticket_id, reason=payload.reason, level=payload.level)
    if updated is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    activity_emit(
        "ticket_escalated",
        {"ticket_id": ticket_id, "level": updated.escalation_level, "manual": True},
    )
    background_tasks.add_task(trigger_escalation_webhook, updated)
    return updated


@app.post("/tickets/{ticket_id}/generate-response", response_model=SuggestedResponse)
def generate_response(ticket_id: str) -> SuggestedResponse:
    """Draft a reply from the conversation so far. Falls back to a template, never errors."""
    tickets = get_ticket_repo()
    ticket = _ticket_or_404(ticket_id)
    agent = workflow.resolve_agent(get_agent_repo(), ticket.assigned_agent_id)
    text = generate_suggested_response(
        ticket,
        tickets.list_messages(ticket_id),
        agent_name=agent.name if agent else DEFAULT_AGENT_NAME,
        client=get_llm_client(),
    )
    return SuggestedResponse(suggested_response=text)


@app.post("/tickets/{ticket_id}/analyze", response_model=TicketAnalysis)
def analyze_ticket(ticket_id: str) -> TicketAnalysis:
    """Re-run the analyzer; refreshes AI suggestions and tags only."""
    ticket = _ticket_or_404(ticket_id)
    return workflow.reanalyze_ticket(get_ticket_repo(), get_analyzer(), ticket)


# --- Escalation ---


@app.post("/check-escalations", response_model=EscalationCheckResult)
def run_escalation_check(background_tasks: BackgroundTasks) -> EscalationCheckResult:
    """Run one escalation scan now (the worker runs the same scan on a schedule)."""

    def _on_escalated(ticket: Ticket, rule: EscalationRule) -> None:
        activity_emit(
            "ticket_escalated",
            {"ticket_id": ticket.id, "level": ticket.escalation_level, "rule_id": rule.id},
        )
        if rule.notify_management:
            background_tasks.add_task(trigger_escalation_webhook, ticket)

    escalated = check_escalations(get_ticket_repo(), get_rule_set(), on_escalated=_on_escalated)
    activity_emit("escalations_checked", {"escalated_count": len(escalated)})
    return EscalationCheckResult(escalated_count=len(escalated), tickets=escalated)


@app.get("/escalation-rules", response_model=list[EscalationRule])
def list_escalation_rules() -> list[EscalationRule]:
    return get_rule_set().list_rules()


# --- Stats ---


@app.get("/stats", response_model=Stats)
def stats() -> Stats:
    return compute_stats(get_ticket_repo(), get_agent_repo())


# --- Agents ---


@app.get("/agents", response_model=list[SupportAgent])
def list_agents() -> list[SupportAgent]:
    return get_agent_repo().list_agents()


@app.post("/agents", status_code=201, response_model=SupportAgent)
def create_agent(payload: AgentCreate) -> SupportAgent:
    agent = get_agent_repo().create_agent(payload)
    activity_emit("agent_created", {"agent_id": agent.id})
    return agent


@app.post("/agents/loads/reconcile")
def reconcile_loads() -> dict:
    """Set each agent's load to its count of open (non-terminal) assigned tickets. Use to fix drift."""
    updated = workflow.reconcile_agent_loads(get_ticket_repo(), get_agent_repo())
    return {"status": "ok", "agents_updated": updated}


@app.get("/agents/{agent_id}", response_model=AgentDetail)
def get_agent(agent_id: str) -> AgentDetail:
    agent = _agent_or_404(agent_id)
    return workflow.agent_detail(get_ticket_repo(), agent)


@app.patch("/agents/{agent_id}", response_model=SupportAgent)
def patch_agent(agent_id: str, payload: AgentUpdate) -> SupportAgent:
    fields = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if "skills" in fields and not fields["skills"]:
        raise TicketValidationError("an agent needs at least one skill")
    updated = get_agent_repo().update_agent(agent_id, fields)
    if updated is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return updated


@app.delete("/agents/{agent_id}", status_code=204)
def delete_agent(agent_id: str) -> Response:
    """Remove an agent. Tickets keep their assignedAgentId and read as unassigned."""
    if not get_agent_repo().delete_agent(agent_id):
        raise HTTPException(status_code=404, detail="Agent not found")
    activity_emit("agent_deleted", {"agent_id": agent_id})
    return Response(status_code=204)


# --- Activity / health ---


@app.get("/activity")
def get_activity(limit: int = 100, ticket_id: Optional[str] = Query(None, alias="ticketId")) -> dict:
    """Recent service events (ticket created, assigned, escalated, escalation scans, ...)."""
    if limit < 1 or limit > 200:
        limit = 100
    return {"events": activity_get_recent(limit=limit, ticket_id=ticket_id)}


@app.get("/health")
def health() -> dict:
    """Health check, including the analyzer circuit breaker state."""
    return {"status": "ok", "analyzer": get_analyzer().get_state()}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    uvicorn.run(app, host="127.0.0.1", port=8000)
