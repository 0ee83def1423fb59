"""
AI DJ Database Operations

PostgreSQL-backed stores for taste profiles, listening history, the track
similarity cache, compound scores and artist affinities. Table definitions
live in sql/ai_dj_schema.sql.

Each store is a thin class so the engine can be handed test doubles with the
same methods.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from psycopg.types.json import Jsonb

from db_utils import get_db_connection
from dj_models import ArtistAffinity, CompoundScore, ListeningPlay, SimilarityEdge, TasteProfile

logger = logging.getLogger(__name__)


# ============================================================================
# TASTE PROFILES
# ============================================================================

class TasteProfileStore:

    def get(self, user_id: str) -> Optional[TasteProfile]:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT user_id, genre_distribution, top_keywords, total_songs,
                           last_analyzed, refresh_needed
                    FROM library_profiles
                    WHERE user_id = %s
                """, (user_id,))
                row = cur.fetchone()

        if not row:
            return None

        return TasteProfile(
            user_id=row['user_id'],
            genre_distribution=row['genre_distribution'] or {},
            top_keywords=row['top_keywords'] or [],
            total_songs=row['total_songs'] or 0,
            last_analyzed=row['last_analyzed'],
            refresh_needed=bool(row['refresh_needed']),
        )

    def upsert(self, user_id: str, profile: TasteProfile) -> None:
        """Replace the whole profile for a user"""
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO library_profiles
                        (user_id, genre_distribution, top_keywords, total_songs,
                         last_analyzed, refresh_needed)
                    VALUES (%s, %s, %s, %s, %s, false)
                    ON CONFLICT (user_id) DO UPDATE SET
                        genre_distribution = EXCLUDED.genre_distribution,
                        top_keywords = EXCLUDED.top_keywords,
                        total_songs = EXCLUDED.total_songs,
                        last_analyzed = EXCLUDED.last_analyzed,
                        refresh_needed = false
                """, (
                    user_id,
                    Jsonb(profile.genre_distribution),
                    Jsonb(profile.top_keywords),
                    profile.total_songs,
                    profile.last_analyzed,
                ))

    def mark_refresh_needed(self, user_id: str) -> None:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE library_profiles SET refresh_needed = true WHERE user_id = %s",
                    (user_id,)
                )


# ============================================================================
# LISTENING HISTORY
# ============================================================================

class ListeningHistoryStore:

    def get_recent_plays(self, user_id: str, since: datetime, limit: int = 100) -> List[ListeningPlay]:
        """Most recent play of each (artist, title) since the cutoff"""
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT artist, title, MAX(song_id) AS track_id, MAX(played_at) AS last_played
                    FROM listening_history
                    WHERE user_id = %s AND played_at >= %s
                    GROUP BY artist, title
                    ORDER BY last_played DESC
                    LIMIT %s
                """, (user_id, since, limit))
                rows = cur.fetchall()

        return [
            ListeningPlay(artist=r['artist'], title=r['title'],
                          last_played_at=r['last_played'], track_id=r['track_id'])
            for r in rows
        ]

    def get_artist_play_counts(self, user_id: str, since: datetime) -> List[dict]:
        """
        Per-artist play statistics since the cutoff.

        Returns:
            Dicts with 'artist', 'played_songs' (distinct tracks),
            'total_plays' and 'last_played'
        """
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT artist,
                           COUNT(DISTINCT song_id) AS played_songs,
                           COUNT(*) AS total_plays,
                           MAX(played_at) AS last_played
                    FROM listening_history
                    WHERE user_id = %s AND played_at >= %s
                    GROUP BY artist
                """, (user_id, since))
                return cur.fetchall()


# ============================================================================
# SIMILARITY CACHE
# ============================================================================

class SimilarityStore:

    def get_similar(self, artist: str, title: str, now: datetime) -> List[SimilarityEdge]:
        """Unexpired similarity edges for one source track"""
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT source_artist, source_title, target_artist, target_title,
                           target_song_id, match_score, expires_at
                    FROM track_similarities
                    WHERE source_artist = %s AND source_title = %s AND expires_at >= %s
                """, (artist, title, now))
                rows = cur.fetchall()

        return [
            SimilarityEdge(
                source_artist=r['source_artist'],
                source_title=r['source_title'],
                target_artist=r['target_artist'],
                target_title=r['target_title'],
                match_score=r['match_score'],
                expires_at=r['expires_at'],
                target_track_id=r['target_song_id'],
            )
            for r in rows
        ]


# ============================================================================
# COMPOUND SCORES
# ============================================================================

def _compound_from_row(row: dict) -> CompoundScore:
    return CompoundScore(
        user_id=row['user_id'],
        track_id=row['song_id'],
        artist=row['artist'],
        title=row['title'],
        score=row['score'],
        source_count=row['source_count'],
        recency_weighted_score=row['recency_weighted_score'],
        calculated_at=row['calculated_at'],
    )


class CompoundScoreStore:

    COLUMNS = """user_id, song_id, artist, title, score, source_count,
                 recency_weighted_score, calculated_at"""

    def upsert_many(self, scores: Sequence[CompoundScore]) -> int:
        """Insert or overwrite scores keyed on (user_id, song_id); last writer wins"""
        if not scores:
            return 0

        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.executemany("""
                    INSERT INTO compound_scores
                        (user_id, song_id, artist, title, score, source_count,
                         recency_weighted_score, calculated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (user_id, song_id) DO UPDATE SET
                        artist = EXCLUDED.artist,
                        title = EXCLUDED.title,
                        score = EXCLUDED.score,
                        source_count = EXCLUDED.source_count,
                        recency_weighted_score = EXCLUDED.recency_weighted_score,
                        calculated_at = EXCLUDED.calculated_at
                """, [
                    (s.user_id, s.track_id, s.artist, s.title, s.score, s.source_count,
                     s.recency_weighted_score, s.calculated_at)
                    for s in scores
                ])

        logger.debug(f"Upserted {len(scores)} compound scores")
        return len(scores)

    def get_many(self, user_id: str, track_ids: Sequence[str]) -> List[CompoundScore]:
        if not track_ids:
            return []

        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    SELECT {self.COLUMNS}
                    FROM compound_scores
                    WHERE user_id = %s AND song_id = ANY(%s)
                """, (user_id, list(track_ids)))
                return [_compound_from_row(r) for r in cur.fetchall()]

    def get_top(self, user_id: str, limit: int, min_source_count: int = 1) -> List[CompoundScore]:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    SELECT {self.COLUMNS}
                    FROM compound_scores
                    WHERE user_id = %s AND source_count >= %s
                    ORDER BY recency_weighted_score DESC
                    LIMIT %s
                """, (user_id, min_source_count, limit))
                return [_compound_from_row(r) for r in cur.fetchall()]

    def delete_for_user(self, user_id: str) -> int:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM compound_scores WHERE user_id = %s", (user_id,))
                return cur.rowcount

    def delete_older_than(self, cutoff: datetime) -> int:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM compound_scores WHERE calculated_at < %s", (cutoff,))
                return cur.rowcount


# ============================================================================
# ARTIST AFFINITIES
# ============================================================================

class ArtistAffinityStore:

    def replace_for_user(self, user_id: str, affinities: Sequence[ArtistAffinity]) -> int:
        """Swap a user's affinities for a freshly calculated set in one transaction"""
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM artist_affinities WHERE user_id = %s", (user_id,))
                if affinities:
                    cur.executemany("""
                        INSERT INTO artist_affinities
                            (user_id, artist, affinity_score, play_count, calculated_at)
                        VALUES (%s, %s, %s, %s, %s)
                    """, [
                        (a.user_id, a.artist, a.affinity_score, a.play_count, a.calculated_at)
                        for a in affinities
                    ])
        return len(affinities)

    def get_for_user(self, user_id: str, limit: int = 50) -> Dict[str, float]:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT artist, affinity_score
                    FROM artist_affinities
                    WHERE user_id = %s
                    ORDER BY affinity_score DESC
                    LIMIT %s
                """, (user_id, limit))
                return {r['artist']: r['affinity_score'] for r in cur.fetchall()}
