"""Tests de la résolution des moments en fenêtres temporelles."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from crucible_ledger.data.domain.moments import (
    LAUNCH_DATE,
    Moment,
    TimeWindow,
    current_season,
    most_recent_reset,
    resolve_moment,
)
from tests.conftest import NOW


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestWeekly:
    """Fenêtre hebdo : depuis le dernier mardi 17:00 UTC."""

    def test_window_bounds(self):
        """La semaine commence au dernier mardi 17:00 UTC."""
        window = resolve_moment(Moment.WEEKLY, NOW)

        assert window.start == _utc(2021, 9, 7, 17)
        assert window.end == NOW

    def test_relative_activities(self):
        """Seules les activités de la semaine en cours sont incluses."""
        window = resolve_moment(Moment.WEEKLY, NOW)

        assert not window.contains(NOW - timedelta(days=8))
        assert window.contains(NOW - timedelta(days=3))
        assert window.contains(NOW - timedelta(hours=1))

    def test_reset_instant_is_included(self):
        """L'instant du reset appartient à la nouvelle semaine."""
        reset = _utc(2021, 9, 7, 17)
        window = resolve_moment(Moment.WEEKLY, NOW)

        assert window.contains(reset)
        assert not window.contains(reset - timedelta(seconds=1))

    def test_just_before_reset_uses_previous_week(self):
        """Juste avant le reset, la semaine précédente s'applique."""
        assert most_recent_reset(_utc(2021, 9, 7, 16, 59), weekday=1) == _utc(2021, 8, 31, 17)
        assert most_recent_reset(_utc(2021, 9, 7, 17), weekday=1) == _utc(2021, 9, 7, 17)


class TestOtherMoments:
    """Moments quotidiens, glissants et saisonniers."""

    def test_daily_before_reset_hour(self):
        """Avant 17:00, la journée a commencé la veille."""
        window = resolve_moment(Moment.DAILY, _utc(2021, 9, 11, 10))
        assert window.start == _utc(2021, 9, 10, 17)

    def test_daily_after_reset_hour(self):
        """Après 17:00, la journée commence le jour même."""
        window = resolve_moment(Moment.DAILY, _utc(2021, 9, 11, 18))
        assert window.start == _utc(2021, 9, 11, 17)

    def test_weekend_starts_friday(self):
        """Le week-end commence le vendredi 17:00."""
        window = resolve_moment(Moment.WEEKEND, NOW)
        assert window.start == _utc(2021, 9, 10, 17)

    @pytest.mark.parametrize(
        "moment, days",
        [(Moment.DAY, 1), (Moment.WEEK, 7), (Moment.MONTH, 30)],
    )
    def test_rolling_windows(self, moment, days):
        """Les fenêtres glissantes finissent maintenant."""
        window = resolve_moment(moment, NOW)
        assert window.start == NOW - timedelta(days=days)
        assert window.end == NOW

    def test_current_season(self):
        """La saison en cours est déterminée par la date."""
        assert current_season(NOW) is Moment.SEASON_OF_THE_LOST
        window = resolve_moment(Moment.SEASON, NOW)
        assert window.start == _utc(2021, 8, 24, 17)
        assert window.end == NOW

    def test_past_season_ends_at_next_start(self):
        """Une saison passée finit au début de la suivante."""
        window = resolve_moment(Moment.SEASON_OF_THE_HUNT, NOW)
        assert window.start == _utc(2020, 11, 10, 17)
        assert window.end == _utc(2021, 2, 9, 17)

    def test_all_time_starts_at_launch(self):
        """all_time commence au lancement du jeu."""
        window = resolve_moment("all_time", NOW)
        assert window.start == LAUNCH_DATE
        assert window.end == NOW

    def test_now_is_empty(self):
        """La fenêtre now ne contient rien."""
        window = resolve_moment(Moment.NOW, NOW)
        assert not window.contains(NOW)

    def test_unknown_name(self):
        """Un nom de moment inconnu lève ValueError."""
        with pytest.raises(ValueError):
            Moment.from_name("fortnight")

    def test_cli_names_are_normalized(self):
        """Les noms CLI sont normalisés (casse et tirets)."""
        assert Moment.from_name("Season-of-the-Lost") is Moment.SEASON_OF_THE_LOST


class TestTimeWindow:
    """Fenêtre [start, end) en UTC."""

    def test_naive_bounds_are_utc(self):
        """Des bornes naïves sont lues comme UTC."""
        window = TimeWindow(datetime(2021, 9, 1), datetime(2021, 9, 2))

        assert window.start.tzinfo is timezone.utc
        assert window.start_naive == datetime(2021, 9, 1)
        assert window.contains(datetime(2021, 9, 1, 12))
        assert not window.contains(_utc(2021, 9, 2))

    def test_other_timezones_are_converted(self):
        """Des bornes dans un autre fuseau sont converties en UTC."""
        paris = timezone(timedelta(hours=2))
        window = TimeWindow(datetime(2021, 9, 1, 19, tzinfo=paris), _utc(2021, 9, 2))

        assert window.start == _utc(2021, 9, 1, 17)
