"""Tests for the retrying transaction runner."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from org_assignments.errors import ConflictError, ValidationError
from org_assignments.services.ledger_transaction import TransactionRunner


def _integrity_error():
    return IntegrityError("INSERT INTO position_assignments", {}, Exception("UNIQUE constraint failed"))


class TestTransactionRunner:
    """Test TransactionRunner.run."""

    def test_commits_result(self, app_context):
        runner = TransactionRunner()
        assert runner.run(lambda: 42, "answer") == 42
        assert runner.metrics.get_stats()["committed"] == 1

    def test_retries_lost_race(self, app_context):
        """A unique-index collision is retried and the second attempt wins."""
        runner = TransactionRunner(max_retries=3, retry_delay_ms=0)
        work = MagicMock(side_effect=[_integrity_error(), "ok"])

        assert runner.run(work, "assign position 1") == "ok"
        assert work.call_count == 2
        stats = runner.metrics.get_stats()
        assert stats["retries"] == 1
        assert stats["conflicts"] == 0

    def test_conflict_after_retries(self, app_context):
        runner = TransactionRunner(max_retries=3, retry_delay_ms=0)
        work = MagicMock(
            side_effect=OperationalError("UPDATE", {}, Exception("database is locked"))
        )

        with pytest.raises(ConflictError, match="assign position 1"):
            runner.run(work, "assign position 1")

        assert work.call_count == 3
        stats = runner.metrics.get_stats()
        assert stats["conflicts"] == 1
        assert stats["last_conflict"] == "assign position 1"

    def test_other_errors_propagate(self, app_context):
        runner = TransactionRunner(max_retries=3, retry_delay_ms=0)
        work = MagicMock(side_effect=ValidationError("bad input"))

        with pytest.raises(ValidationError):
            runner.run(work, "assign position 1")
        assert work.call_count == 1
