import uuid
from datetime import datetime, timedelta, timezone

from followups.db.models import Execution, MessageLog
from followups.schemas.execution import ConversationTrack, ExecutionStart
from followups.services import conversation_service, execution_service

T0 = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def _start(db, org_id, sequence, conversation_id="conv-1", phone="+549111"):
    return execution_service.start_execution(
        db,
        org_id,
        ExecutionStart(
            sequence_id=sequence.id,
            contact_phone=phone,
            conversation_id=conversation_id,
            conversation_context={"nombre": "Ana"},
        ),
        now=T0,
    )


def test_track_creates_then_refreshes_link(db, org_id):
    link = conversation_service.track_for_follow_up(
        db,
        org_id,
        ConversationTrack(conversation_id="conv-1", inbox_id="inbox-7", account_id="acc-1", contact_ref="c-99"),
        now=T0,
    )
    assert link.awaiting_response is True
    assert link.last_outbound_at == T0
    assert link.inbox_id == "inbox-7"

    again = conversation_service.track_for_follow_up(
        db, org_id, ConversationTrack(conversation_id="conv-1"), now=T0 + timedelta(minutes=5)
    )
    assert again.id == link.id
    assert again.last_outbound_at == T0 + timedelta(minutes=5)
    # Omitted fields keep their previous values
    assert again.inbox_id == "inbox-7"
    assert again.contact_ref == "c-99"


def test_cancel_on_response_cancels_open_executions(db, org_id, make_sequence):
    sequence = make_sequence()
    active = _start(db, org_id, sequence)
    paused = _start(db, org_id, sequence, phone="+549222")
    execution_service.pause_execution(db, org_id, paused.id)
    other = _start(db, org_id, sequence, conversation_id="conv-2", phone="+549333")

    cancelled = conversation_service.cancel_on_response(db, "conv-1", org_id=org_id, now=T0 + timedelta(hours=2))

    assert set(cancelled) == {active.id, paused.id}
    db.expire_all()
    assert db.get(Execution, active.id).status == "cancelled"
    assert db.get(Execution, paused.id).status == "cancelled"
    assert db.get(Execution, other.id).status == "active"


async def test_cancel_on_response_records_reply_on_latest_log(db, org_id, make_sequence, dispatcher):
    sequence = make_sequence()
    execution = _start(db, org_id, sequence)
    await execution_service.advance_execution(db, execution.id, dispatcher, now=T0 + timedelta(hours=1))

    reply_at = T0 + timedelta(hours=2)
    conversation_service.cancel_on_response(
        db, "conv-1", org_id=org_id, response_text="¿Tienen envío gratis?", now=reply_at
    )

    log = db.query(MessageLog).filter(MessageLog.execution_id == execution.id).one()
    assert log.contact_responded is True
    assert log.response_received_at == reply_at
    assert log.response_text == "¿Tienen envío gratis?"


def test_cancel_on_response_leaves_terminal_executions(db, org_id, make_sequence):
    sequence = make_sequence()
    execution = _start(db, org_id, sequence)
    execution_service.mark_converted(db, org_id, execution.id, now=T0)

    assert conversation_service.cancel_on_response(db, "conv-1", org_id=org_id) == []
    db.expire_all()
    assert db.get(Execution, execution.id).status == "completed"


def test_cancel_on_response_is_org_scoped(db, org_id, make_sequence):
    sequence = make_sequence()
    execution = _start(db, org_id, sequence)

    assert conversation_service.cancel_on_response(db, "conv-1", org_id=uuid.uuid4()) == []
    db.expire_all()
    assert db.get(Execution, execution.id).status == "active"


def test_inbound_reply_clears_awaiting_flag(db, org_id):
    conversation_service.track_for_follow_up(db, org_id, ConversationTrack(conversation_id="conv-1"), now=T0)

    conversation_service.cancel_on_response(db, "conv-1", org_id=org_id, now=T0 + timedelta(minutes=3))

    stale = conversation_service.list_stale_conversations(db, org_id, 1, now=T0 + timedelta(hours=1))
    assert stale == []


def test_list_stale_conversations(db, org_id):
    conversation_service.track_for_follow_up(db, org_id, ConversationTrack(conversation_id="old"), now=T0)
    conversation_service.track_for_follow_up(
        db, org_id, ConversationTrack(conversation_id="fresh"), now=T0 + timedelta(minutes=50)
    )
    conversation_service.track_for_follow_up(db, uuid.uuid4(), ConversationTrack(conversation_id="other-org"), now=T0)

    stale = conversation_service.list_stale_conversations(db, org_id, 30, now=T0 + timedelta(hours=1))
    assert [link.conversation_id for link in stale] == ["old"]


def test_cancel_on_response_matches_conversation_from_context(db, org_id, make_sequence):
    sequence = make_sequence()
    execution = execution_service.start_execution(
        db,
        org_id,
        ExecutionStart(
            sequence_id=sequence.id,
            contact_phone="+549111",
            conversation_context={"nombre": "Ana", "conversation_id": "77"},
        ),
        now=T0,
    )

    cancelled = conversation_service.cancel_on_response(db, "77", org_id=org_id, now=T0 + timedelta(minutes=30))

    assert cancelled == [execution.id]
    db.expire_all()
    assert db.get(Execution, execution.id).status == "cancelled"
