"""
Tests for full user profile recalculation.
"""

from unittest.mock import Mock

import pytest

from taste_profile import TasteProfileService
from tests.test_doubles import (
    FakeAffinityStore,
    FakeHistoryStore,
    FakeLibraryClient,
    FakeProfileStore,
    make_track,
)
from user_profile import AFFINITY_WINDOW, calculate_artist_affinities, calculate_full_user_profile


PLAY_COUNTS = [
    {'artist': 'Artist B', 'played_songs': 3, 'total_plays': 5},
    {'artist': 'Artist A', 'played_songs': 4, 'total_plays': 10},
    {'artist': '', 'played_songs': 1, 'total_plays': 1},
    {'artist': 'Artist C', 'played_songs': 0, 'total_plays': 0},
]


@pytest.fixture
def profile_service(clock):
    library = FakeLibraryClient(
        tracks=[make_track('1', 'Money', 'Pink Floyd')],
        artists=[{'id': 'a1', 'name': 'Pink Floyd', 'genres': 'Rock'}],
    )
    return TasteProfileService(FakeProfileStore(), library, clock=clock)


@pytest.fixture
def scorer():
    scorer = Mock()
    scorer.calculate.return_value = 4
    scorer.purge_stale.return_value = 1
    return scorer


class TestArtistAffinities:

    def test_normalized_to_top_artist(self, clock):
        affinities = calculate_artist_affinities('u1', PLAY_COUNTS, clock())

        assert [(a.artist, a.affinity_score, a.play_count) for a in affinities] == [
            ('Artist A', 1.0, 10),
            ('Artist B', 0.5, 5),
        ]
        assert all(a.user_id == 'u1' and a.calculated_at == clock() for a in affinities)

    def test_played_songs_used_without_total(self, clock):
        affinities = calculate_artist_affinities('u1', [{'artist': 'A', 'played_songs': 2}], clock())

        assert affinities[0].play_count == 2

    def test_no_plays(self, clock):
        assert calculate_artist_affinities('u1', [], clock()) == []


class TestFullProfile:

    def test_all_steps(self, profile_service, scorer, clock):
        history = FakeHistoryStore(artist_counts=PLAY_COUNTS)
        affinities = FakeAffinityStore()

        summary = calculate_full_user_profile('u1', profile_service=profile_service,
                                              compound_scorer=scorer, history_store=history,
                                              affinity_store=affinities, clock=clock)

        assert summary['failed_steps'] == []
        assert summary['taste_profile'] == {'total_songs': 1, 'genres': 1, 'keywords': 3}
        assert summary['compound_scores'] == 4
        assert summary['artist_affinities'] == 2
        assert summary['stale_scores_purged'] == 1
        assert history.play_count_calls == [('u1', clock() - AFFINITY_WINDOW)]
        assert [a.artist for a in affinities.affinities['u1']] == ['Artist A', 'Artist B']
        scorer.calculate.assert_called_once_with('u1')

    def test_failed_step_does_not_stop_others(self, profile_service, scorer, clock):
        scorer.calculate.side_effect = RuntimeError('database down')
        affinities = FakeAffinityStore()

        summary = calculate_full_user_profile('u1', profile_service=profile_service,
                                              compound_scorer=scorer,
                                              history_store=FakeHistoryStore(artist_counts=PLAY_COUNTS),
                                              affinity_store=affinities, clock=clock)

        assert summary['failed_steps'] == ['compound_scores']
        assert summary['taste_profile'] is not None
        assert summary['artist_affinities'] == 2
        assert summary['stale_scores_purged'] == 1

    def test_missing_collaborators_skip_steps(self, clock):
        summary = calculate_full_user_profile('u1', clock=clock)

        assert summary == {
            'user_id': 'u1',
            'taste_profile': None,
            'compound_scores': 0,
            'artist_affinities': 0,
            'stale_scores_purged': 0,
            'failed_steps': [],
        }

    def test_profile_failure_reported(self, scorer, clock):
        profiles = Mock()
        profiles.get_or_create.side_effect = RuntimeError('library down')

        summary = calculate_full_user_profile('u1', profile_service=profiles, compound_scorer=scorer,
                                              clock=clock)

        assert summary['failed_steps'] == ['taste_profile']
        profiles.get_or_create.assert_called_once_with('u1', force_refresh=True)
