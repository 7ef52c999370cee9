from datetime import datetime, timedelta, timezone

from click.testing import CliRunner

from followups.cli import cli
from followups.schemas.execution import ExecutionStart
from followups.services import execution_service


def test_process_pending_with_nothing_due():
    result = CliRunner().invoke(cli, ["process-pending"])
    assert result.exit_code == 0, result.output
    assert "due=0" in result.output


def test_list_due_prints_due_execution_ids(db, org_id, make_sequence):
    sequence = make_sequence()
    execution = execution_service.start_execution(
        db,
        org_id,
        ExecutionStart(sequence_id=sequence.id, contact_phone="+549111"),
        now=datetime.now(timezone.utc) - timedelta(hours=2),
    )

    result = CliRunner().invoke(cli, ["list-due"])

    assert result.exit_code == 0, result.output
    assert str(execution.id) in result.output
