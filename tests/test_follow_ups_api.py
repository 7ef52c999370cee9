import uuid

from followups.core.config import settings
from followups.main import app
from followups.routers import internal

SEQUENCE_PAYLOAD = {
    "name": "Carrito Abandonado",
    "trigger_type": "keyword",
    "trigger_config": {"keywords": ["carrito"]},
    "steps": [
        {"delay_amount": 0, "delay_unit": "minutes", "message_template": "Hola {nombre}, ¿sigues interesado?"},
        {"delay_amount": 1, "delay_unit": "days", "message_template": "Última oportunidad, {nombre}!"},
    ],
}


async def _create_sequence(client, headers, **overrides):
    response = await client.post("/follow-ups/sequences", json={**SEQUENCE_PAYLOAD, **overrides}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def _start(client, headers, sequence_id, phone="+549111", conversation_id="conv-1"):
    response = await client.post(
        "/follow-ups/executions/start",
        json={
            "sequence_id": sequence_id,
            "contact_phone": phone,
            "conversation_id": conversation_id,
            "conversation_context": {"nombre": "Ana"},
        },
        headers=headers,
    )
    return response


# =============================================================================
# Sequences
# =============================================================================


async def test_sequence_crud(client, org_headers):
    created = await _create_sequence(client, org_headers)
    assert [s["step_order"] for s in created["steps"]] == [1, 2]
    assert created["strategy"] == "moderate"
    sequence_id = created["id"]

    response = await client.get(f"/follow-ups/sequences/{sequence_id}", headers=org_headers)
    assert response.status_code == 200
    assert response.json()["name"] == "Carrito Abandonado"

    response = await client.get("/follow-ups/sequences", headers=org_headers)
    assert [s["id"] for s in response.json()] == [sequence_id]

    response = await client.put(
        f"/follow-ups/sequences/{sequence_id}",
        json={"enabled": False, "steps": [{"delay_amount": 2, "delay_unit": "hours", "message_template": "Hola"}]},
        headers=org_headers,
    )
    assert response.status_code == 200
    assert response.json()["enabled"] is False
    assert len(response.json()["steps"]) == 1

    response = await client.delete(f"/follow-ups/sequences/{sequence_id}", headers=org_headers)
    assert response.status_code == 204
    response = await client.get(f"/follow-ups/sequences/{sequence_id}", headers=org_headers)
    assert response.status_code == 404


async def test_sequences_are_isolated_per_org(client, org_headers):
    created = await _create_sequence(client, org_headers)
    other = {"X-Organization-Id": str(uuid.uuid4())}

    response = await client.get(f"/follow-ups/sequences/{created['id']}", headers=other)
    assert response.status_code == 404
    response = await client.delete(f"/follow-ups/sequences/{created['id']}", headers=other)
    assert response.status_code == 404


async def test_create_sequence_validation(client, org_headers):
    gap = {
        **SEQUENCE_PAYLOAD,
        "steps": [
            {"step_order": 1, "delay_amount": 1, "delay_unit": "hours", "message_template": "a"},
            {"step_order": 3, "delay_amount": 1, "delay_unit": "hours", "message_template": "b"},
        ],
    }
    response = await client.post("/follow-ups/sequences", json=gap, headers=org_headers)
    assert response.status_code == 400
    assert "contiguous" in response.json()["detail"]

    response = await client.post(
        "/follow-ups/sequences", json={**SEQUENCE_PAYLOAD, "trigger_config": {}}, headers=org_headers
    )
    assert response.status_code == 400

    response = await client.post("/follow-ups/sequences", json={**SEQUENCE_PAYLOAD, "steps": []}, headers=org_headers)
    assert response.status_code == 422


async def test_org_header_required(client):
    response = await client.get("/follow-ups/sequences")
    assert response.status_code == 422

    response = await client.get("/follow-ups/sequences", headers={"X-Organization-Id": "not-a-uuid"})
    assert response.status_code == 400


# =============================================================================
# Executions
# =============================================================================


async def test_start_and_drive_execution(client, org_headers):
    sequence = await _create_sequence(client, org_headers)

    response = await _start(client, org_headers, sequence["id"])
    assert response.status_code == 201
    execution = response.json()
    assert execution["status"] == "active"
    assert execution["current_step"] == 0

    response = await client.put(f"/follow-ups/executions/{execution['id']}/pause", headers=org_headers)
    assert response.json()["status"] == "paused"
    response = await client.put(f"/follow-ups/executions/{execution['id']}/resume", headers=org_headers)
    assert response.json()["status"] == "active"

    response = await client.put(f"/follow-ups/executions/{execution['id']}/convert", headers=org_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["converted"] is True

    response = await client.put(f"/follow-ups/executions/{execution['id']}/pause", headers=org_headers)
    assert response.status_code == 409

    response = await client.get(f"/follow-ups/sequences/{sequence['id']}/stats", headers=org_headers)
    assert response.json()["conversions"] == 1
    assert response.json()["conversion_rate"] == 100.0


async def test_start_errors(client, org_headers):
    sequence = await _create_sequence(client, org_headers, enabled=False)

    response = await _start(client, org_headers, sequence["id"])
    assert response.status_code == 409

    response = await _start(client, org_headers, str(uuid.uuid4()))
    assert response.status_code == 404


async def test_start_with_non_numeric_message_count_is_rejected(client, org_headers):
    sequence = await _create_sequence(client, org_headers, conditions={"min_conversation_messages": 2})

    response = await client.post(
        "/follow-ups/executions/start",
        json={
            "sequence_id": sequence["id"],
            "contact_phone": "+549111",
            "trigger_data": {"conversation_message_count": "varios"},
        },
        headers=org_headers,
    )
    assert response.status_code == 409
    assert "conversation_message_count" in response.json()["detail"]


async def test_list_and_cancel_executions(client, org_headers):
    sequence = await _create_sequence(client, org_headers)
    first = (await _start(client, org_headers, sequence["id"], phone="+549111")).json()
    await _start(client, org_headers, sequence["id"], phone="+549222", conversation_id="conv-2")

    response = await client.put(f"/follow-ups/executions/{first['id']}/cancel", headers=org_headers)
    assert response.json()["status"] == "cancelled"
    # Second cancel is a no-op
    again = await client.put(f"/follow-ups/executions/{first['id']}/cancel", headers=org_headers)
    assert again.status_code == 200
    assert again.json()["completed_at"] == response.json()["completed_at"]

    response = await client.get("/follow-ups/executions", params={"status": "active"}, headers=org_headers)
    assert response.headers["X-Total-Count"] == "1"
    assert response.json()[0]["contact_phone"] == "+549222"

    response = await client.put(f"/follow-ups/executions/{uuid.uuid4()}/cancel", headers=org_headers)
    assert response.status_code == 404


async def test_process_pending_sends_due_steps(client, org_headers, dispatcher):
    sequence = await _create_sequence(client, org_headers)
    execution = (await _start(client, org_headers, sequence["id"])).json()

    response = await client.post(
        "/follow-ups/process-pending", headers={"X-Internal-Secret": "test-internal-secret"}
    )
    assert response.status_code == 200
    assert response.json()["sent"] == 1
    assert dispatcher.texts == ["Hola Ana, ¿sigues interesado?"]

    response = await client.get(f"/follow-ups/executions/{execution['id']}", headers=org_headers)
    detail = response.json()
    assert detail["current_step"] == 1
    assert [log["delivery_status"] for log in detail["message_logs"]] == ["sent"]


async def test_process_pending_requires_internal_secret(client):
    response = await client.post("/follow-ups/process-pending", headers={"X-Internal-Secret": "wrong"})
    assert response.status_code == 403


async def test_process_pending_unavailable_when_transport_misconfigured(client, monkeypatch):
    app.dependency_overrides.pop(internal.get_scheduler)
    monkeypatch.setattr(settings, "MESSAGE_TRANSPORT", "evolution")
    monkeypatch.setattr(settings, "EVOLUTION_API_URL", "")

    response = await client.post(
        "/follow-ups/process-pending", headers={"X-Internal-Secret": "test-internal-secret"}
    )
    assert response.status_code == 503
    assert "EVOLUTION_API_URL" in response.json()["detail"]


# =============================================================================
# Conversations
# =============================================================================


async def test_inbound_message_cancels_follow_ups(client, org_headers):
    sequence = await _create_sequence(client, org_headers)
    execution = (await _start(client, org_headers, sequence["id"])).json()

    response = await client.post(
        "/follow-ups/conversations/track",
        json={"conversation_id": "conv-1", "inbox_id": "inbox-1"},
        headers=org_headers,
    )
    assert response.status_code == 200
    assert response.json()["awaiting_response"] is True

    response = await client.post(
        "/follow-ups/conversations/conv-1/inbound",
        json={"response_text": "Ya lo compré"},
        headers=org_headers,
    )
    assert response.json()["cancelled_execution_ids"] == [execution["id"]]

    response = await client.get(f"/follow-ups/executions/{execution['id']}", headers=org_headers)
    assert response.json()["status"] == "cancelled"


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
