"""
HTTP API over in-memory services (TestClient; startup seeds agent-1..agent-3).
Run: pytest tests/test_api.py -v
"""

from datetime import timedelta

from app.models import TicketPriority, utcnow
from app.services import backend
from conftest import ticket_payload

NEW_TICKET = {
    "subject": "Cannot connect to the API",
    "description": "Our integration times out on every request.",
    "customerEmail": "dana@example.com",
    "customerName": "Dana Lee",
}


def _create(client, **overrides) -> dict:
    r = client.post("/tickets", json={**NEW_TICKET, **overrides})
    assert r.status_code == 201, r.text
    return r.json()


class TestTickets:
    def test_create_routes_to_skilled_agent(self, client):
        data = _create(client)
        ticket = data["ticket"]
        assert ticket["category"] == "technical"
        assert ticket["priority"] == "high"
        assert ticket["status"] == "open"
        assert ticket["aiSuggestedCategory"] == "technical"
        assert ticket["assignedAgentId"] == "agent-2"
        assert data["assignedAgent"] == {"id": "agent-2", "name": "Mike Chen"}
        assert data["analysis"]["category"] == "technical"
        assert client.get("/agents/agent-2").json()["currentTicketCount"] == 6

    def test_missing_field_is_400(self, client):
        r = client.post("/tickets", json={"subject": "x", "description": "y", "customerName": "z"})
        assert r.status_code == 400
        assert client.get("/tickets").json() == []

    def test_empty_subject_is_400(self, client):
        r = client.post("/tickets", json={**NEW_TICKET, "subject": ""})
        assert r.status_code == 400

    def test_get_ticket_with_thread(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        r = client.get(f"/tickets/{ticket_id}")
        assert r.status_code == 200
        body = r.json()
        assert body["assignedAgent"]["name"] == "Mike Chen"
        assert [m["senderType"] for m in body["messages"]] == ["customer"]
        assert client.get(f"/tickets/{ticket_id}/messages").json() == body["messages"]

    def test_unknown_ticket_is_404(self, client):
        assert client.get("/tickets/nope").status_code == 404
        assert client.patch("/tickets/nope", json={"subject": "x"}).status_code == 404
        assert client.delete("/tickets/nope").status_code == 404
        assert client.post("/tickets/nope/escalate").status_code == 404
        assert client.post("/tickets/nope/generate-response").status_code == 404

    def test_list_filters(self, client):
        first = _create(client)["ticket"]["id"]
        second = _create(client, subject="Refund please", description="I was charged twice.")["ticket"]["id"]
        assert [t["id"] for t in client.get("/tickets").json()] == [second, first]
        assert [t["id"] for t in client.get("/tickets", params={"agentId": "agent-2"}).json()] == [first]
        client.patch(f"/tickets/{first}", json={"status": "in_progress"})
        in_progress = client.get("/tickets", params={"status": "in_progress"}).json()
        assert [t["id"] for t in in_progress] == [first]
        assert client.get("/tickets", params={"status": "bogus"}).status_code == 400

    def test_patch_resolve_and_transitions(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        assert client.patch(f"/tickets/{ticket_id}", json={"status": "closed"}).status_code == 409
        r = client.patch(f"/tickets/{ticket_id}", json={"status": "resolved"})
        assert r.status_code == 200
        assert r.json()["resolvedAt"] is not None
        assert client.patch(f"/tickets/{ticket_id}", json={"status": "closed"}).status_code == 200
        assert client.patch(f"/tickets/{ticket_id}", json={"status": "open"}).status_code == 409

    def test_patch_cannot_lower_escalation_level(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        client.post(f"/tickets/{ticket_id}/escalate", json={"level": 2})
        r = client.patch(f"/tickets/{ticket_id}", json={"escalationLevel": 1})
        assert r.status_code == 400

    def test_delete(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        r = client.delete(f"/tickets/{ticket_id}")
        assert r.status_code == 204
        assert client.get(f"/tickets/{ticket_id}").status_code == 404
        assert client.get(f"/tickets/{ticket_id}/messages").status_code == 404


class TestThreadAndAssignment:
    def test_agent_reply_starts_work(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        r = client.post(
            f"/tickets/{ticket_id}/messages",
            json={"content": "Looking into it", "senderId": "agent-2", "senderType": "agent"},
        )
        assert r.status_code == 201
        assert r.json()["isInternal"] is False
        ticket = client.get(f"/tickets/{ticket_id}").json()
        assert ticket["status"] == "in_progress"
        assert ticket["firstResponseAt"] is not None

    def test_message_validation(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        r = client.post(f"/tickets/{ticket_id}/messages", json={"content": "hi", "senderType": "robot",
                                                                 "senderId": "x"})
        assert r.status_code == 400
        r = client.post("/tickets/nope/messages", json={"content": "hi", "senderType": "agent", "senderId": "x"})
        assert r.status_code == 404

    def test_reassign_moves_load(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        r = client.post(f"/tickets/{ticket_id}/assign", json={"agentId": "agent-1"})
        assert r.status_code == 200
        assert r.json()["assignedAgentId"] == "agent-1"
        assert r.json()["status"] == "in_progress"
        assert client.get("/agents/agent-2").json()["currentTicketCount"] == 5
        assert client.get("/agents/agent-1").json()["currentTicketCount"] == 4
        thread = client.get(f"/tickets/{ticket_id}/messages").json()
        assert thread[-1]["content"] == "Ticket assigned to Sarah Johnson"
        assert thread[-1]["isInternal"] is True

    def test_assign_unknown_agent(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        assert client.post(f"/tickets/{ticket_id}/assign", json={"agentId": "ghost"}).status_code == 404

    def test_generate_response_fallback(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        r = client.post(f"/tickets/{ticket_id}/generate-response")
        assert r.status_code == 200
        text = r.json()["suggestedResponse"]
        assert text.startswith("Dear Dana Lee")
        assert "Cannot connect to the API" in text
        assert text.endswith("Mike Chen")

    def test_analyze_refreshes_suggestions(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        r = client.post(f"/tickets/{ticket_id}/analyze")
        assert r.status_code == 200
        assert r.json()["category"] == "technical"


class TestEscalation:
    def test_manual_escalation_defaults(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        r = client.post(f"/tickets/{ticket_id}/escalate")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "escalated"
        assert body["escalationLevel"] == 1
        assert body["escalationReason"] == "Manual escalation"

    def test_escalating_resolved_ticket_is_409(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        client.patch(f"/tickets/{ticket_id}", json={"status": "resolved"})
        assert client.post(f"/tickets/{ticket_id}/escalate", json={"reason": "late"}).status_code == 409

    def test_check_escalations(self, client):
        repo = backend.get_ticket_repo()
        old = repo.create_ticket(
            ticket_payload(priority=TicketPriority.URGENT), now=utcnow() - timedelta(minutes=20)
        )
        _create(client)
        r = client.post("/check-escalations")
        assert r.status_code == 200
        body = r.json()
        assert body["escalatedCount"] == 1
        assert body["tickets"][0]["id"] == old.id
        assert body["tickets"][0]["escalationLevel"] == 2
        assert client.post("/check-escalations").json()["escalatedCount"] == 0

    def test_rules(self, client):
        rules = client.get("/escalation-rules").json()
        assert [r["id"] for r in rules] == ["rule-1", "rule-2", "rule-3"]
        assert rules[0]["category"] is None
        assert rules[0]["notifyManagement"] is True


class TestAgents:
    def test_seeded(self, client):
        agents = client.get("/agents").json()
        assert {a["id"] for a in agents} == {"agent-1", "agent-2", "agent-3"}

    def test_crud(self, client):
        r = client.post("/agents", json={"name": "Pat", "email": "pat@support.com", "skills": ["billing"]})
        assert r.status_code == 201
        agent = r.json()
        assert agent["currentTicketCount"] == 0
        assert agent["satisfactionScore"] == 5.0

        r = client.patch(f"/agents/{agent['id']}", json={"isOnline": False, "currentTicketCount": 7})
        assert r.status_code == 200
        assert r.json()["isOnline"] is False
        assert r.json()["currentTicketCount"] == 0

        detail = client.get(f"/agents/{agent['id']}").json()
        assert detail["assignedTickets"] == []

        assert client.delete(f"/agents/{agent['id']}").status_code == 204
        assert client.get(f"/agents/{agent['id']}").status_code == 404
        assert client.delete(f"/agents/{agent['id']}").status_code == 404

    def test_skills_required(self, client):
        assert client.post("/agents", json={"name": "Pat", "email": "p@x", "skills": []}).status_code == 400
        assert client.patch("/agents/agent-1", json={"skills": []}).status_code == 400
        assert client.patch("/agents/ghost", json={"name": "x"}).status_code == 404

    def test_deleted_agent_reads_as_unassigned(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        client.delete("/agents/agent-2")
        ticket = client.get(f"/tickets/{ticket_id}").json()
        assert ticket["assignedAgentId"] == "agent-2"
        assert ticket["assignedAgent"] is None

    def test_reconcile_loads(self, client):
        _create(client)
        r = client.post("/agents/loads/reconcile")
        assert r.json() == {"status": "ok", "agents_updated": 3}
        loads = {a["id"]: a["currentTicketCount"] for a in client.get("/agents").json()}
        assert loads == {"agent-1": 0, "agent-2": 1, "agent-3": 0}


class TestStatsHealthActivity:
    def test_stats(self, client):
        _create(client)
        stats = client.get("/stats").json()
        assert stats["totalTickets"] == 1
        assert stats["openTickets"] == 1
        assert stats["agentsOnline"] == 2
        assert stats["totalAgents"] == 3
        assert stats["ticketsByCategory"] == {"technical": 1}

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["analyzer"]["state"] == "closed"

    def test_activity(self, client):
        ticket_id = _create(client)["ticket"]["id"]
        client.post(f"/tickets/{ticket_id}/escalate")
        events = client.get("/activity", params={"ticketId": ticket_id}).json()["events"]
        assert [e["type"] for e in events] == ["ticket_created", "ticket_escalated"]
