import uuid
from datetime import datetime, timedelta, timezone

import pytest

from followups.core.exceptions import NotFoundError
from followups.schemas.execution import ExecutionStart
from followups.services import execution_service, stats_service

T0 = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def _start(db, org_id, sequence, phone):
    return execution_service.start_execution(
        db,
        org_id,
        ExecutionStart(sequence_id=sequence.id, contact_phone=phone, conversation_context={"nombre": "Ana"}),
        now=T0,
    )


async def test_sequence_stats(db, org_id, make_sequence, dispatcher):
    sequence = make_sequence()
    first = _start(db, org_id, sequence, "+549111")
    second = _start(db, org_id, sequence, "+549222")
    third = _start(db, org_id, sequence, "+549333")
    _start(db, org_id, sequence, "+549444")

    due = T0 + timedelta(hours=1)
    await execution_service.advance_execution(db, first.id, dispatcher, now=due)
    await execution_service.advance_execution(db, first.id, dispatcher, now=due + timedelta(days=1))
    await execution_service.advance_execution(db, second.id, dispatcher, now=due)
    dispatcher.fail_next()
    await execution_service.advance_execution(db, third.id, dispatcher, now=due)

    execution_service.mark_converted(db, org_id, first.id)
    execution_service.mark_converted(db, org_id, second.id)
    execution_service.cancel_execution(db, org_id, third.id)

    stats = stats_service.get_sequence_stats(db, org_id, sequence.id)

    assert stats.total_executions == 4
    assert stats.conversions == 2
    assert stats.conversion_rate == 50.0
    assert stats.average_steps_to_conversion == 1.5
    assert stats.by_status == {"completed": 2, "cancelled": 1, "active": 1}
    assert stats.messages_sent == 3
    assert stats.failed_sends == 1


def test_stats_for_unused_sequence(db, org_id, make_sequence):
    sequence = make_sequence()
    stats = stats_service.get_sequence_stats(db, org_id, sequence.id)

    assert stats.total_executions == 0
    assert stats.conversion_rate == 0.0
    assert stats.average_steps_to_conversion is None
    assert stats.by_status == {}


def test_stats_missing_sequence(db, org_id):
    with pytest.raises(NotFoundError):
        stats_service.get_sequence_stats(db, org_id, uuid.uuid4())


def test_org_stats_lists_each_sequence(db, org_id, make_sequence):
    make_sequence(name="B")
    make_sequence(name="A")
    make_sequence(owner_org_id=uuid.uuid4(), name="Other")

    assert [s.name for s in stats_service.get_org_stats(db, org_id)] == ["A", "B"]
