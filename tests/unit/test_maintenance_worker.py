"""Unit tests for the maintenance worker sweeps."""

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from booking.workers import maintenance_worker
from booking.workers.maintenance_worker import (
    SweepResult,
    cancel_expired_pending_appointments,
    determine_pending_to_cancel,
    finalize_past_appointments,
    update_health_check,
)
from database.models import AppointmentStatus
from tests.helpers import make_appointment, result_with

MODULE = "booking.workers.maintenance_worker"
NOW = datetime(2030, 3, 1, 12, 0, tzinfo=UTC)


class TestDeterminePendingToCancel:
    def test_unpaid_deposit_is_candidate(self):
        appointment = make_appointment(deposit_cents=2000)
        assert determine_pending_to_cancel([appointment], {}) == [appointment]

    def test_partially_paid_deposit_is_candidate(self):
        appointment = make_appointment(deposit_cents=2000)
        assert determine_pending_to_cancel([appointment], {appointment.id: 1500}) == [appointment]

    def test_covered_deposit_is_kept(self):
        appointment = make_appointment(deposit_cents=2000)
        assert determine_pending_to_cancel([appointment], {appointment.id: 2000}) == []

    @pytest.mark.parametrize("deposit", [0, None, -100, "abc"])
    def test_missing_or_zero_deposit_is_candidate(self, deposit):
        appointment = make_appointment(deposit_cents=deposit)
        assert determine_pending_to_cancel([appointment], {appointment.id: 5000}) == [appointment]

    def test_paid_totals_normalized(self):
        appointment = make_appointment(deposit_cents=2000)
        assert determine_pending_to_cancel([appointment], {appointment.id: "2000"}) == []
        assert determine_pending_to_cancel([appointment], {appointment.id: -5}) == [appointment]


class TestCancelExpiredPending:
    @pytest.mark.asyncio
    async def test_unpaid_pending_after_grace_is_canceled(self, mock_session):
        """Created 3h ago, pending, deposit 2000 unpaid, grace 2h -> canceled."""
        appointment = make_appointment(
            deposit_cents=2000, created_at=NOW - timedelta(hours=3)
        )
        mock_session.execute.side_effect = [
            result_with(scalars=[appointment]),
            result_with(rows=[]),
        ]
        guarded = AsyncMock(return_value=True)

        with patch(f"{MODULE}.guarded_update", new=guarded):
            result = await cancel_expired_pending_appointments(mock_session, grace_hours=2, now=NOW)

        assert result == SweepResult(transitioned=1, failed=0)
        args = guarded.await_args.args
        assert args[1] == appointment.id
        assert args[2] == (AppointmentStatus.PENDING,)
        assert args[3]["status"] == AppointmentStatus.CANCELED
        assert args[3]["canceled_at"] == NOW
        assert len(guarded.await_args.kwargs["extra_conditions"]) == 1
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_paid_deposit_is_not_canceled(self, mock_session):
        appointment = make_appointment(deposit_cents=2000)
        mock_session.execute.side_effect = [
            result_with(scalars=[appointment]),
            result_with(rows=[(appointment.id, 2000)]),
        ]
        guarded = AsyncMock(return_value=True)

        with patch(f"{MODULE}.guarded_update", new=guarded):
            result = await cancel_expired_pending_appointments(mock_session, now=NOW)

        assert result.transitioned == 0
        guarded.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_write_time_recheck_losing_is_skipped(self, mock_session):
        """A payment confirmed between SELECT and UPDATE makes the write match nothing."""
        appointment = make_appointment(deposit_cents=2000)
        mock_session.execute.side_effect = [
            result_with(scalars=[appointment]),
            result_with(rows=[]),
        ]

        with patch(f"{MODULE}.guarded_update", new=AsyncMock(return_value=False)):
            result = await cancel_expired_pending_appointments(mock_session, now=NOW)

        assert result == SweepResult(transitioned=0, failed=0)

    @pytest.mark.asyncio
    async def test_row_failure_is_counted_and_batch_continues(self, mock_session):
        first = make_appointment(deposit_cents=2000)
        second = make_appointment(deposit_cents=2000)
        mock_session.execute.side_effect = [
            result_with(scalars=[first, second]),
            result_with(rows=[]),
        ]
        guarded = AsyncMock(side_effect=[RuntimeError("deadlock"), True])

        with patch(f"{MODULE}.guarded_update", new=guarded):
            result = await cancel_expired_pending_appointments(mock_session, now=NOW)

        assert result == SweepResult(transitioned=1, failed=1)
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_nothing_pending(self, mock_session):
        mock_session.execute.return_value = result_with(scalars=[])

        result = await cancel_expired_pending_appointments(mock_session, now=NOW)

        assert result == SweepResult()
        mock_session.execute.assert_awaited_once()


class TestFinalizePastAppointments:
    @pytest.mark.asyncio
    async def test_single_batch(self, mock_session):
        ids = [uuid4(), uuid4()]
        mock_session.execute.side_effect = [
            result_with(scalars=ids),
            result_with(rows=[(i,) for i in ids]),
        ]

        result = await finalize_past_appointments(mock_session, grace_hours=3, now=NOW)

        assert result.transitioned == 2
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_loops_until_no_rows_left(self, mock_session):
        batch_one = [uuid4(), uuid4()]
        mock_session.execute.side_effect = [
            result_with(scalars=batch_one),
            result_with(rows=[(i,) for i in batch_one]),
            result_with(scalars=[]),
        ]

        result = await finalize_past_appointments(mock_session, batch_size=2, now=NOW)

        assert result.transitioned == 2
        assert mock_session.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_batch_failure_is_reported(self, mock_session):
        ids = [uuid4()]
        mock_session.execute.side_effect = [
            result_with(scalars=ids),
            RuntimeError("connection lost"),
        ]

        result = await finalize_past_appointments(mock_session, now=NOW)

        assert result == SweepResult(transitioned=0, failed=1)
        mock_session.rollback.assert_awaited_once()


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_writes_job_status(self, tmp_path):
        await update_health_check("expire_pending", NOW, "healthy", 3, 0, health_dir=tmp_path)
        await update_health_check("finalize_past", NOW, "unhealthy", 0, 1, health_dir=tmp_path)

        data = json.loads((tmp_path / "maintenance_worker_health.json").read_text())
        assert data["expire_pending"]["processed"] == 3
        assert data["finalize_past"]["errors"] == 1
        assert data["overall_status"] == "unhealthy"


class TestAsyncMain:
    @pytest.mark.asyncio
    async def test_runs_every_job_then_stops(self, monkeypatch):
        monkeypatch.setattr(maintenance_worker, "shutdown_requested", False)
        ran = []

        async def fake_run_job(name, job):
            ran.append(name)
            if len(ran) == 3:
                maintenance_worker.shutdown_requested = True

        with (
            patch(f"{MODULE}.run_job", new=fake_run_job),
            patch(f"{MODULE}.update_health_check", new=AsyncMock()),
        ):
            await maintenance_worker.async_main(tick_seconds=0)

        assert ran == ["expire_pending", "finalize_past", "dispatch_reminders"]

    @pytest.mark.asyncio
    async def test_run_job_survives_job_crash(self):
        health = AsyncMock()

        async def crashing_job():
            raise RuntimeError("db unreachable")

        with patch(f"{MODULE}.update_health_check", new=health):
            await maintenance_worker.run_job("expire_pending", crashing_job)

        assert health.await_args.kwargs["status"] == "unhealthy"
        assert health.await_args.kwargs["errors"] == 1
