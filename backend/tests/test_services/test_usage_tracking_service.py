"""Usage tracking service tests: atomic increments, daily export window, resets and reports."""

import asyncio
from datetime import datetime

import pytest
from sqlalchemy.exc import DataError

from entitlements.exceptions import NotFoundError, ValidationError
from entitlements.models.usage_tracking import MAX_USAGE_DELTA, UsageCategory, UsageTracking
from entitlements.services import usage_tracking_service as usage_tracking_module


class TestTrackUsage:
    async def test_first_increment_creates_the_period_record(self, usage_tracking_service):
        record = await usage_tracking_service.track_usage("user-1", UsageCategory.QUESTIONS)

        assert record.id is not None
        assert record.period == "2024-01"
        assert record.questions == 1
        assert record.is_current is True
        assert record.is_reset is False
        assert record.teachers == 0

    async def test_increments_accumulate(self, usage_tracking_service):
        await usage_tracking_service.track_usage("user-1", "questions", 3)
        record = await usage_tracking_service.track_usage("user-1", "questions", 4)

        assert record.questions == 7
        assert len(await usage_tracking_service.get_user_usage_history("user-1")) == 1

    @pytest.mark.parametrize("delta", [0, -1, True, 1.5, "2", None])
    async def test_rejects_non_positive_deltas(self, usage_tracking_service, delta):
        with pytest.raises(ValidationError):
            await usage_tracking_service.track_usage("user-1", "questions", delta)

    @pytest.mark.parametrize("delta", [MAX_USAGE_DELTA + 1, 2**31, 2**63])
    async def test_rejects_oversized_deltas(self, usage_tracking_service, delta):
        with pytest.raises(ValidationError) as exc_info:
            await usage_tracking_service.track_usage("user-1", "questions", delta)

        assert exc_info.value.details["maximum"] == MAX_USAGE_DELTA
        record = await usage_tracking_service.get_current_usage("user-1")
        assert record.id is None

    async def test_largest_delta_is_accepted(self, usage_tracking_service):
        await usage_tracking_service.track_usage("user-1", "questions", MAX_USAGE_DELTA)
        record = await usage_tracking_service.track_usage("user-1", "questions", MAX_USAGE_DELTA)
        assert record.questions == 2 * MAX_USAGE_DELTA

    async def test_out_of_range_counter_is_a_validation_error(self, usage_tracking_service, monkeypatch):
        def overflowing_upsert(*args, **kwargs):
            raise DataError("INSERT INTO usage_tracking", {}, Exception("integer out of range"))

        monkeypatch.setattr(usage_tracking_module, "_build_upsert", overflowing_upsert)

        with pytest.raises(ValidationError) as exc_info:
            await usage_tracking_service.track_usage("user-1", "questions", 1)
        assert isinstance(exc_info.value.original_error, DataError)

    async def test_rejects_unknown_category(self, usage_tracking_service):
        with pytest.raises(ValidationError):
            await usage_tracking_service.track_usage("user-1", "pizzas")

    async def test_concurrent_increments_are_never_lost(self, usage_tracking_service):
        await asyncio.gather(
            *(usage_tracking_service.track_usage("user-1", "questions", 1) for _ in range(25))
        )

        record = await usage_tracking_service.get_current_usage("user-1")
        assert record.questions == 25
        assert len(await usage_tracking_service.get_user_usage_history("user-1")) == 1

    async def test_new_month_starts_a_new_record(self, usage_tracking_service, clock):
        await usage_tracking_service.track_usage("user-1", "questions", 2)
        clock.set(datetime(2024, 2, 1, 0, 0, 1))
        record = await usage_tracking_service.track_usage("user-1", "questions", 1)

        assert record.period == "2024-02"
        assert record.questions == 1
        january = await usage_tracking_service.get_usage_for_period("user-1", "2024-01")
        assert january.questions == 2


class TestDailyExportWindow:
    async def test_same_day_exports_add_up(self, usage_tracking_service, clock):
        await usage_tracking_service.track_usage("user-1", "assignment_exports", 3)
        clock.advance(hours=2)
        record = await usage_tracking_service.track_usage("user-1", "assignment_exports", 2)

        assert record.assignment_exports == 5
        assert record.assignment_exports_today == 5
        assert record.exports_day == "2024-01-15"

    async def test_new_day_restarts_the_window(self, usage_tracking_service, clock):
        await usage_tracking_service.track_usage("user-1", "assignment_exports", 3)
        clock.advance(days=1)
        record = await usage_tracking_service.track_usage("user-1", "assignment_exports", 1)

        assert record.assignment_exports == 4
        assert record.assignment_exports_today == 1
        assert record.exports_on("2024-01-16") == 1
        assert record.exports_on("2024-01-15") == 0

    async def test_other_categories_leave_the_window_alone(self, usage_tracking_service):
        await usage_tracking_service.track_usage("user-1", "assignment_exports", 2)
        record = await usage_tracking_service.track_usage("user-1", "questions", 1)

        assert record.assignment_exports_today == 2
        assert record.exports_day == "2024-01-15"


class TestBulkUsage:
    async def test_applies_every_increment(self, usage_tracking_service):
        await usage_tracking_service.track_bulk_usage("user-1", {"questions": 3, "rag_agent": 2})

        record = await usage_tracking_service.get_current_usage("user-1")
        assert record.questions == 3
        assert record.rag_agent == 2

    async def test_concurrent_bulk_updates_stay_whole(self, usage_tracking_service):
        await asyncio.gather(
            *(
                usage_tracking_service.track_bulk_usage("user-1", {"questions": 3, "rag_agent": 2})
                for _ in range(10)
            )
        )

        record = await usage_tracking_service.get_current_usage("user-1")
        assert (record.questions, record.rag_agent) == (30, 20)

    async def test_one_bad_entry_rejects_the_whole_call(self, usage_tracking_service):
        with pytest.raises(ValidationError):
            await usage_tracking_service.track_bulk_usage("user-1", {"questions": 3, "rag_agent": 0})
        with pytest.raises(ValidationError):
            await usage_tracking_service.track_bulk_usage("user-1", {"questions": 3, "pizzas": 1})
        with pytest.raises(ValidationError):
            await usage_tracking_service.track_bulk_usage("user-1", {"questions": 3, "rag_agent": 2**63})

        record = await usage_tracking_service.get_current_usage("user-1")
        assert record.id is None
        assert record.questions == 0

    async def test_empty_bulk_is_rejected(self, usage_tracking_service):
        with pytest.raises(ValidationError):
            await usage_tracking_service.track_bulk_usage("user-1", {})

    async def test_bulk_exports_feed_the_daily_window(self, usage_tracking_service):
        record = await usage_tracking_service.track_bulk_usage(
            "user-1", {UsageCategory.ASSIGNMENT_EXPORTS: 2, UsageCategory.QUESTIONS: 1}
        )
        assert record.assignment_exports_today == 2


class TestReads:
    async def test_current_usage_without_records_is_unsaved_zero(self, usage_tracking_service):
        record = await usage_tracking_service.get_current_usage("user-1")

        assert record.id is None
        assert record.period == "2024-01"
        assert all(value == 0 for value in record.counters().values())
        assert await usage_tracking_service.get_user_usage_history("user-1") == []

    async def test_unknown_period(self, usage_tracking_service):
        with pytest.raises(NotFoundError):
            await usage_tracking_service.get_usage_for_period("user-1", "2023-05")

    async def test_malformed_period(self, usage_tracking_service):
        with pytest.raises(ValidationError):
            await usage_tracking_service.get_usage_for_period("user-1", "2023-5")

    async def test_period_falls_back_to_superseded_record(self, usage_tracking_service, services):
        async with services.session_factory() as session:
            async with session.begin():
                older = UsageTracking.empty("user-1", "2023-11")
                older.is_current = False
                older.questions = 4
                older.superseded_at = datetime(2023, 11, 20)
                newer = UsageTracking.empty("user-1", "2023-11")
                newer.is_current = False
                newer.questions = 9
                newer.superseded_at = datetime(2023, 11, 25)
                session.add_all([older, newer])

        record = await usage_tracking_service.get_usage_for_period("user-1", "2023-11")
        assert record.questions == 9

    async def test_list_filters(self, usage_tracking_service, clock):
        await usage_tracking_service.track_usage("a", "questions")
        await usage_tracking_service.track_usage("b", "questions")
        clock.set(datetime(2024, 2, 10))
        await usage_tracking_service.track_usage("a", "questions")

        by_user = await usage_tracking_service.list_usage_tracking({"user_id": "a"})
        assert [r.period for r in by_user] == ["2024-02", "2024-01"]
        by_period = await usage_tracking_service.list_usage_tracking({"period": "2024-01"})
        assert sorted(r.user_id for r in by_period) == ["a", "b"]

        with pytest.raises(ValidationError):
            await usage_tracking_service.list_usage_tracking({"period": "January"})


class TestReset:
    async def test_reset_keeps_history(self, usage_tracking_service, clock):
        before = await usage_tracking_service.track_usage("user-1", "questions", 5)
        clock.advance(minutes=1)

        fresh = await usage_tracking_service.reset_usage("user-1")

        assert fresh.id != before.id
        assert fresh.is_reset is True
        assert fresh.questions == 0
        current = await usage_tracking_service.get_current_usage("user-1")
        assert current.id == fresh.id

        history = await usage_tracking_service.get_user_usage_history("user-1")
        assert [r.id for r in history] == [fresh.id, before.id]
        old = history[1]
        assert old.is_current is False
        assert old.questions == 5
        assert old.superseded_at == clock.now

    async def test_tracking_after_reset_hits_the_new_record(self, usage_tracking_service):
        await usage_tracking_service.track_usage("user-1", "questions", 5)
        fresh = await usage_tracking_service.reset_usage("user-1")

        record = await usage_tracking_service.track_usage("user-1", "questions", 2)
        assert record.id == fresh.id
        assert record.questions == 2

    async def test_reset_without_usage_creates_a_record(self, usage_tracking_service):
        fresh = await usage_tracking_service.reset_usage("user-1")
        assert fresh.is_reset is True
        assert len(await usage_tracking_service.get_user_usage_history("user-1")) == 1


class TestAggregates:
    async def test_aggregated_usage_spans_periods_and_resets(self, usage_tracking_service, clock):
        await usage_tracking_service.track_usage("user-1", "questions", 5)
        await usage_tracking_service.reset_usage("user-1")
        await usage_tracking_service.track_usage("user-1", "questions", 2)
        clock.set(datetime(2024, 2, 3))
        await usage_tracking_service.track_usage("user-1", "lumen_agent", 4)

        aggregated = await usage_tracking_service.get_aggregated_usage("user-1")
        assert aggregated.period_count == 2
        assert aggregated.totals["questions"] == 7
        assert aggregated.totals["lumen_agent"] == 4
        assert aggregated.totals["teachers"] == 0

    async def test_aggregated_usage_for_unknown_user(self, usage_tracking_service):
        aggregated = await usage_tracking_service.get_aggregated_usage("nobody")
        assert aggregated.period_count == 0
        assert set(aggregated.totals.values()) == {0}

    async def test_summary_by_period(self, usage_tracking_service, clock):
        await usage_tracking_service.track_usage("a", "questions", 1)
        await usage_tracking_service.track_usage("b", "questions", 2)
        await usage_tracking_service.reset_usage("a")
        clock.set(datetime(2024, 2, 3))
        await usage_tracking_service.track_usage("c", "questions", 10)

        summary = await usage_tracking_service.get_usage_summary_by_period("2024-01")
        assert summary.user_count == 2
        assert summary.record_count == 3
        assert summary.totals["questions"] == 3
