"""Pure streak arithmetic at day and window boundaries."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ascend.progression.streak_service import next_streak

WINDOW = timedelta(hours=48)
BASE = datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc)


class TestNextStreak:
    def test_first_activity_starts_at_one(self):
        assert next_streak(0, None, BASE, WINDOW) == 1

    def test_same_day_is_unchanged(self):
        assert next_streak(4, BASE, BASE + timedelta(hours=10), WINDOW) == 4

    def test_next_day_increments(self):
        assert next_streak(4, BASE, BASE + timedelta(hours=24), WINDOW) == 5

    def test_exactly_at_window_still_continues(self):
        assert next_streak(4, BASE, BASE + WINDOW, WINDOW) == 5

    def test_gap_longer_than_window_resets(self):
        assert next_streak(4, BASE, BASE + timedelta(hours=49), WINDOW) == 1

    def test_late_delivery_of_older_event_is_ignored(self):
        assert next_streak(4, BASE, BASE - timedelta(days=1), WINDOW) == 4

    def test_swept_streak_restarts_at_one(self):
        assert next_streak(0, BASE, BASE + timedelta(hours=20), WINDOW) == 1

    def test_midnight_crossing_counts_as_new_day(self):
        late = datetime(2026, 2, 10, 23, 59, tzinfo=timezone.utc)
        assert next_streak(2, late, late + timedelta(minutes=2), WINDOW) == 3
