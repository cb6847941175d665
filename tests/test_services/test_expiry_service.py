"""
Tests for expiry_service and the Celery sweep task.
"""

import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from app import create_app
from app.config import TestingConfig, config_by_name
from app.exceptions import InvalidStateError
from app.extensions import db
from app.models.allocation import STATUS_APPROVED, STATUS_COMPLETED, STATUS_PENDING
from app.services import allocation_service, expiry_service
from app.tasks import SWEEP_SCHEDULE_NAME, SWEEP_TASK_NAME, sweep_expired_allocations


class TestParseEndTime:
    """End-time parsing: every accepted form, and everything rejected."""

    def test_day_first_slash(self):
        assert expiry_service.parse_end_time("25/12/2024") == datetime(
            2024, 12, 25, tzinfo=timezone.utc
        )

    def test_day_first_dash(self):
        assert expiry_service.parse_end_time("5-1-2025") == datetime(
            2025, 1, 5, tzinfo=timezone.utc
        )

    def test_iso_with_z_suffix(self):
        assert expiry_service.parse_end_time("2024-12-25T10:00:00Z") == datetime(
            2024, 12, 25, 10, tzinfo=timezone.utc
        )

    def test_iso_and_day_first_agree_on_the_date(self):
        iso = expiry_service.parse_end_time("2024-12-25T00:00:00Z")
        day_first = expiry_service.parse_end_time("25/12/2024")
        assert iso == day_first

    def test_iso_offset_is_converted_to_utc(self):
        assert expiry_service.parse_end_time("2024-12-25T10:00:00+05:30") == datetime(
            2024, 12, 25, 4, 30, tzinfo=timezone.utc
        )

    def test_iso_date_only(self):
        assert expiry_service.parse_end_time("2024-12-25") == datetime(
            2024, 12, 25, tzinfo=timezone.utc
        )

    def test_date_and_naive_datetime_are_utc(self):
        assert expiry_service.parse_end_time(date(2024, 12, 25)) == datetime(
            2024, 12, 25, tzinfo=timezone.utc
        )
        assert expiry_service.parse_end_time(datetime(2024, 12, 25, 8)).tzinfo is not None

    @pytest.mark.parametrize(
        "value",
        ["not-a-date", "", "   ", None, "31/02/2024", "12/13/2024", "2024-13-01", 20241225],
    )
    def test_invalid_values(self, value):
        assert expiry_service.parse_end_time(value) is None


@pytest.fixture()
def approved_allocation(app, make_user, make_asset):
    """Factory: create and approve an allocation with the given end time."""
    admin = make_user("admin")
    owner = make_user("owner")

    def _approved(end_time, allocation_type="Temporary", recipient=None):
        asset = make_asset(owner)
        allocation = allocation_service.create_allocation(
            {
                "allocated_to": (recipient or make_user()).id,
                "asset": asset.id,
                "allocation_type": allocation_type,
                "end_time": end_time,
            },
            admin,
        )
        return allocation_service.approve_allocation(allocation.id, admin)

    return _approved


class TestRunExpirySweep:
    """Completing approved allocations whose window has ended."""

    def test_past_allocation_is_completed_and_asset_released(self, approved_allocation):
        allocation = approved_allocation("01/01/2020")
        assert allocation.asset.available is False

        report = expiry_service.run_expiry_sweep()

        assert report.completed == 1
        assert allocation.status == STATUS_COMPLETED
        assert allocation.asset.available is True
        # The asset keeps pointing at its last allocation.
        assert allocation.asset.allocation_id == allocation.id

    def test_future_allocation_is_left_alone(self, approved_allocation):
        allocation = approved_allocation("31/12/2999")

        report = expiry_service.run_expiry_sweep()

        assert report.examined == 1
        assert report.completed == 0
        assert allocation.status == STATUS_APPROVED
        assert allocation.asset.available is False

    def test_end_time_equal_to_now_is_expired(self, approved_allocation):
        allocation = approved_allocation("2025-03-01T12:00:00Z")

        report = expiry_service.run_expiry_sweep(
            now=datetime(2025, 3, 1, 12, tzinfo=timezone.utc)
        )

        assert report.completed == 1
        assert allocation.status == STATUS_COMPLETED

    def test_invalid_end_time_is_skipped_and_logged(self, approved_allocation, caplog):
        bad = approved_allocation("someday")
        good = approved_allocation("01/01/2020")

        with caplog.at_level(logging.WARNING):
            report = expiry_service.run_expiry_sweep()

        assert report.skipped_invalid == 1
        assert report.completed == 1
        assert bad.status == STATUS_APPROVED
        assert good.status == STATUS_COMPLETED
        assert "someday" in caplog.text

    def test_allocations_without_end_time_are_ignored(self, approved_allocation):
        allocation = approved_allocation(None)

        report = expiry_service.run_expiry_sweep()

        assert report.examined == 0
        assert allocation.status == STATUS_APPROVED

    def test_pending_allocations_are_ignored(self, app, make_user, make_asset):
        asset = make_asset(make_user("owner"))
        allocation = allocation_service.create_allocation(
            {
                "allocated_to": make_user().id,
                "asset": asset.id,
                "allocation_type": "Temporary",
                "end_time": "01/01/2020",
            },
            make_user("admin"),
        )

        report = expiry_service.run_expiry_sweep()

        assert report.examined == 0
        assert allocation.status == STATUS_PENDING

    def test_one_failure_does_not_stop_the_sweep(
        self, approved_allocation, monkeypatch
    ):
        first = approved_allocation("01/01/2020")
        second = approved_allocation("02/01/2020")
        broken_id = min(first.id, second.id)
        real_expire = allocation_service.expire_allocation

        def flaky_expire(allocation, now=None):
            if allocation.id == broken_id:
                raise InvalidStateError("modified by another request")
            return real_expire(allocation, now)

        monkeypatch.setattr(allocation_service, "expire_allocation", flaky_expire)

        report = expiry_service.run_expiry_sweep()

        assert report.failed == 1
        assert report.completed == 1

    def test_sweep_is_idempotent(self, approved_allocation):
        approved_allocation("01/01/2020")

        assert expiry_service.run_expiry_sweep().completed == 1
        assert expiry_service.run_expiry_sweep().completed == 0

    def test_owner_allocation_keeps_new_owner_after_expiry(
        self, approved_allocation, make_user, push_client
    ):
        recipient = make_user(tokens=["tok-recipient"])
        allocation = approved_allocation("01/01/2020", "Owner", recipient)
        assert allocation.asset.owner_id == recipient.id
        sent_before = len(push_client.sent)

        expiry_service.run_expiry_sweep(now=datetime.now(timezone.utc) + timedelta(days=1))

        assert allocation.status == STATUS_COMPLETED
        assert allocation.asset.owner_id == recipient.id
        assert allocation.asset.available is True
        # Expiry is silent.
        assert len(push_client.sent) == sent_before


class SweepingConfig(TestingConfig):
    """Testing config with the beat schedule switched on."""

    EXPIRY_SWEEP_ENABLED = True
    EXPIRY_SWEEP_INTERVAL_SECONDS = 0


class TestSweepTask:
    """The Celery task wrapping the sweep, and its beat schedule."""

    def test_task_runs_the_sweep(self, app, approved_allocation):
        allocation = approved_allocation("01/01/2020")

        result = sweep_expired_allocations.apply()

        assert result.successful()
        assert result.result["completed"] == 1
        # The task works in its own app context, hence its own session.
        db.session.expire_all()
        assert allocation.status == STATUS_COMPLETED

    def test_task_failure_is_logged_and_raised(self, app, monkeypatch, caplog):
        def boom(now=None):
            raise RuntimeError("database went away")

        monkeypatch.setattr(expiry_service, "run_expiry_sweep", boom)

        with caplog.at_level(logging.ERROR):
            result = sweep_expired_allocations.apply()

        assert result.failed()
        assert isinstance(result.result, RuntimeError)
        assert "database went away" in caplog.text

    def test_testing_config_has_no_beat_schedule(self, app):
        celery_app = app.extensions["celery"]
        assert SWEEP_SCHEDULE_NAME not in (celery_app.conf.beat_schedule or {})


class TestAppFactoryDoesNotSweep:
    """Building an app (web process, ``flask`` CLI) never starts a sweep."""

    @pytest.fixture()
    def sweeping_app(self, monkeypatch):
        calls = []
        monkeypatch.setattr(
            expiry_service, "run_expiry_sweep", lambda now=None: calls.append(now)
        )
        monkeypatch.setitem(config_by_name, "sweeping", SweepingConfig)
        return create_app("sweeping"), calls

    def test_factory_only_schedules_the_sweep(self, sweeping_app):
        flask_app, calls = sweeping_app

        schedule = flask_app.extensions["celery"].conf.beat_schedule
        assert schedule[SWEEP_SCHEDULE_NAME]["task"] == SWEEP_TASK_NAME
        assert calls == []

    def test_interval_is_at_least_one_second(self, sweeping_app):
        flask_app, _ = sweeping_app

        entry = flask_app.extensions["celery"].conf.beat_schedule[SWEEP_SCHEDULE_NAME]
        assert entry["schedule"] == 1.0

