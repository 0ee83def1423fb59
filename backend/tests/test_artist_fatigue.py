"""
Tests for in-memory and history-backed artist fatigue.
"""

from datetime import timedelta

import pytest

from artist_fatigue import ArtistFatigueTracker, HistoryFatigueTracker
from tests.test_doubles import FakeHistoryStore, make_track


@pytest.fixture
def tracker(clock):
    return ArtistFatigueTracker(clock=clock)


class TestArtistFatigueTracker:

    def test_unknown_artist_is_not_fatigued(self, tracker):
        assert not tracker.is_fatigued('Pink Floyd')

    def test_cooldown_after_record(self, tracker, clock):
        tracker.record('Pink Floyd')
        assert tracker.is_fatigued('Pink Floyd')

        clock.advance(hours=1, minutes=59)
        assert tracker.is_fatigued('Pink Floyd')

        clock.advance(minutes=2)
        assert not tracker.is_fatigued('Pink Floyd')

    def test_keys_are_case_insensitive(self, tracker):
        tracker.record('Pink Floyd')
        assert tracker.is_fatigued('pink floyd')
        assert tracker.is_fatigued('  PINK FLOYD ')

    def test_session_cap(self, tracker, clock):
        tracker.record('Queen')
        clock.advance(hours=3)
        tracker.record('Queen')
        clock.advance(hours=3)

        assert tracker.is_fatigued('Queen')

        tracker.reset_session()
        assert not tracker.is_fatigued('Queen')

    def test_daily_cap_rolls_over(self, clock):
        tracker = ArtistFatigueTracker(max_session=10, clock=clock)
        for _ in range(3):
            tracker.record('Eagles')
            clock.advance(hours=3)

        assert tracker.get_state('Eagles').count_today == 3
        assert tracker.is_fatigued('Eagles')

        clock.advance(hours=22)
        assert not tracker.is_fatigued('Eagles')

        tracker.record('Eagles')
        assert tracker.get_state('Eagles').count_today == 1

    def test_fatigue_is_monotonic_in_records(self, clock):
        tracker = ArtistFatigueTracker(max_daily=3, max_session=3, clock=clock)
        results = []
        for _ in range(3):
            tracker.record('Queen')
            results.append(tracker.is_fatigued('Queen'))
            clock.advance(hours=2, minutes=1)
            results.append(tracker.is_fatigued('Queen'))

        # Cooldown expiry frees the artist until the cap is reached
        assert results == [True, False, True, False, True, True]

    def test_filter_fatigued_tracks(self, tracker):
        tracks = [
            make_track('1', 'Money', 'Pink Floyd'),
            make_track('2', 'Bohemian Rhapsody', 'Queen'),
            make_track('3', 'Time', 'pink floyd'),
        ]
        tracker.record('Pink Floyd')

        kept = tracker.filter_fatigued(tracks)

        assert [t.id for t in kept] == ['2']

    def test_filter_with_key(self, tracker):
        tracker.record('Queen')
        items = [{'artist': 'Queen'}, {'artist': 'Eagles'}]

        assert tracker.filter_fatigued(items, key=lambda i: i['artist']) == [{'artist': 'Eagles'}]

    def test_get_stats(self, tracker, clock):
        tracker.record('Queen')
        tracker.record('Queen')
        tracker.record('Eagles')
        clock.advance(hours=3)

        stats = tracker.get_stats()

        assert sorted(stats['recent_artists']) == ['eagles', 'queen']
        assert stats['over_recommended_artists'] == ['queen']
        assert sorted(stats['cooled_down_artists']) == ['eagles', 'queen']


class TestHistoryFatigueTracker:

    @pytest.fixture
    def history(self, clock):
        return FakeHistoryStore(artist_counts=[
            {'artist': 'Queen', 'played_songs': 8, 'last_played': clock() - timedelta(hours=1)},
            {'artist': 'Eagles', 'played_songs': 3, 'last_played': clock() - timedelta(hours=2)},
            {'artist': 'Miles Davis', 'played_songs': 9,
             'last_played': clock() - timedelta(hours=47, minutes=30)},
        ])

    @pytest.fixture
    def history_tracker(self, history, clock):
        return HistoryFatigueTracker(history, 'u1', clock=clock)

    def test_threshold_puts_artist_on_cooldown(self, history_tracker):
        assert history_tracker.is_fatigued('queen')
        assert not history_tracker.is_fatigued('Eagles')
        assert not history_tracker.is_fatigued('Nobody')

    def test_snapshot_reused_until_record(self, history_tracker, history):
        history_tracker.is_fatigued('Queen')
        history_tracker.is_fatigued('Eagles')
        assert len(history.play_count_calls) == 1

        history_tracker.record('Queen')
        history_tracker.is_fatigued('Queen')
        assert len(history.play_count_calls) == 2

    def test_lookback_window(self, history_tracker, history, clock):
        history_tracker.get_artists_on_cooldown()
        _, since = history.play_count_calls[0]
        assert since == clock() - timedelta(hours=72)

    def test_fatigue_report(self, history_tracker):
        report = history_tracker.get_fatigue_report()

        assert sorted(e['artist'] for e in report['on_cooldown']) == ['Miles Davis', 'Queen']
        assert [e['artist'] for e in report['healthy']] == ['Eagles']
        assert report['approaching'] == []

    def test_format_cooldown_remaining(self, history_tracker):
        assert history_tracker.format_cooldown_remaining(history_tracker.get_fatigue('Queen')) == '1d 23h'
        assert history_tracker.format_cooldown_remaining(history_tracker.get_fatigue('Miles Davis')) == '30m'
        assert history_tracker.format_cooldown_remaining(history_tracker.get_fatigue('Eagles')) == 'No cooldown'

    def test_filter_uses_history(self, history_tracker):
        tracks = [make_track('1', 'Bohemian Rhapsody', 'Queen'), make_track('2', 'Desperado', 'Eagles')]

        assert [t.id for t in history_tracker.filter_fatigued(tracks)] == ['2']
