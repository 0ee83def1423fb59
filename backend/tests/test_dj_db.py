"""
Tests for the PostgreSQL stores with the connection mocked out.
"""

from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from dj_db import (
    ArtistAffinityStore,
    CompoundScoreStore,
    ListeningHistoryStore,
    TasteProfileStore,
)
from dj_models import ArtistAffinity, CompoundScore, TasteProfile
from tests.test_doubles import FIXED_NOW


@pytest.fixture
def cursor():
    """Cursor handed out by every patched connection"""
    cursor = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor

    @contextmanager
    def fake_connection():
        yield conn

    with patch('dj_db.get_db_connection', fake_connection):
        yield cursor


class TestTasteProfileStore:

    def test_get_missing(self, cursor):
        cursor.fetchone.return_value = None

        assert TasteProfileStore().get('u1') is None

    def test_get_row(self, cursor):
        cursor.fetchone.return_value = {
            'user_id': 'u1', 'genre_distribution': {'Rock': 1.0}, 'top_keywords': None,
            'total_songs': 12, 'last_analyzed': FIXED_NOW, 'refresh_needed': None,
        }

        profile = TasteProfileStore().get('u1')

        assert profile.genre_distribution == {'Rock': 1.0}
        assert profile.top_keywords == []
        assert profile.total_songs == 12
        assert profile.refresh_needed is False

    def test_upsert_wraps_json(self, cursor):
        profile = TasteProfile('u1', genre_distribution={'Jazz': 1.0}, top_keywords=['blue'],
                               total_songs=3, last_analyzed=FIXED_NOW)

        TasteProfileStore().upsert('u1', profile)

        sql, params = cursor.execute.call_args[0]
        assert 'ON CONFLICT (user_id)' in sql
        assert params[0] == 'u1'
        assert params[1].obj == {'Jazz': 1.0}
        assert params[2].obj == ['blue']
        assert params[3:] == (3, FIXED_NOW)


class TestListeningHistoryStore:

    def test_recent_plays(self, cursor):
        cursor.fetchall.return_value = [
            {'artist': 'Queen', 'title': 'Bohemian Rhapsody', 'track_id': 't2', 'last_played': FIXED_NOW},
        ]
        since = FIXED_NOW - timedelta(days=30)

        plays = ListeningHistoryStore().get_recent_plays('u1', since, limit=20)

        assert plays[0].artist == 'Queen'
        assert plays[0].track_id == 't2'
        assert cursor.execute.call_args[0][1] == ('u1', since, 20)


class TestCompoundScoreStore:

    def _score(self, track_id):
        return CompoundScore(user_id='u1', track_id=track_id, artist='A', title='T', score=0.5,
                             source_count=2, recency_weighted_score=0.4, calculated_at=FIXED_NOW)

    def test_upsert_many(self, cursor):
        count = CompoundScoreStore().upsert_many([self._score('1'), self._score('2')])

        sql, rows = cursor.executemany.call_args[0]
        assert count == 2
        assert 'ON CONFLICT (user_id, song_id)' in sql
        assert rows[0] == ('u1', '1', 'A', 'T', 0.5, 2, 0.4, FIXED_NOW)

    def test_upsert_nothing(self, cursor):
        assert CompoundScoreStore().upsert_many([]) == 0
        cursor.executemany.assert_not_called()

    def test_get_many(self, cursor):
        cursor.fetchall.return_value = [{
            'user_id': 'u1', 'song_id': '1', 'artist': 'A', 'title': 'T', 'score': 0.5,
            'source_count': 2, 'recency_weighted_score': 0.4, 'calculated_at': FIXED_NOW,
        }]

        scores = CompoundScoreStore().get_many('u1', ('1', '2'))

        assert scores == [self._score('1')]
        assert cursor.execute.call_args[0][1] == ('u1', ['1', '2'])

    def test_delete_older_than(self, cursor):
        cursor.rowcount = 7

        assert CompoundScoreStore().delete_older_than(FIXED_NOW) == 7


class TestArtistAffinityStore:

    def test_replace_for_user(self, cursor):
        affinities = [ArtistAffinity(user_id='u1', artist='Queen', affinity_score=1.0, play_count=4,
                                     calculated_at=FIXED_NOW)]

        assert ArtistAffinityStore().replace_for_user('u1', affinities) == 1

        delete_sql = cursor.execute.call_args[0][0]
        assert delete_sql.startswith('DELETE FROM artist_affinities')
        assert cursor.executemany.call_args[0][1] == [('u1', 'Queen', 1.0, 4, FIXED_NOW)]

    def test_get_for_user(self, cursor):
        cursor.fetchall.return_value = [{'artist': 'Queen', 'affinity_score': 1.0}]

        assert ArtistAffinityStore().get_for_user('u1') == {'Queen': 1.0}
