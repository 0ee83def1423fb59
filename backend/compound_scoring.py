"""
Compound Historical Scoring

If several songs a user played recently all point at the same library track
through the similarity cache, that track should rank above one suggested by a
single played song.

    compound_score = SUM(match_score * recency_weight)
    recency_weight = exp(-0.15 * days_since_play)     (~50% after 5 days)

Scores are persisted per (user, track) and reused to boost other
recommendation sources (see apply_boost).
"""

import math
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Sequence

from dj_models import CompoundScore, Track
from utils.helpers import utc_now

logger = logging.getLogger(__name__)

RECENCY_DECAY_RATE = 0.15
MIN_COMPOUND_SCORE = 0.1
LOOKBACK_DAYS = 14
MAX_SOURCE_PLAYS = 100
MAX_TOP_RESULTS = 50
BOOST_NORMALIZER = 5.0
DEFAULT_BOOST_WEIGHT = 0.3
STALE_SCORE_DAYS = 30


def recency_weight(days_since_play: float, decay_rate: float = RECENCY_DECAY_RATE) -> float:
    """Exponential decay weight; 1.0 for a play happening now"""
    return math.exp(-decay_rate * max(days_since_play, 0.0))


def normalize_boost(recency_weighted_score: float) -> float:
    """Map a recency-weighted score onto [0, 1] (scores of 5+ saturate)"""
    return min(recency_weighted_score / BOOST_NORMALIZER, 1.0)


class CompoundScorer:
    """
    Calculates and serves per-user compound scores.

    Args:
        history_store: Provides get_recent_plays(user_id, since, limit)
        similarity_store: Provides get_similar(artist, title, now)
        score_store: Compound score table (upsert_many, get_many, get_top,
            delete_for_user, delete_older_than)
        clock: Returns the current (timezone-aware) time
    """

    def __init__(self, history_store, similarity_store, score_store,
                 clock: Callable[[], datetime] = None, logger=None):
        self.history_store = history_store
        self.similarity_store = similarity_store
        self.score_store = score_store
        self.clock = clock or utc_now
        self.logger = logger or logging.getLogger(__name__)

        self.stats = {
            'plays_considered': 0,
            'plays_with_similar': 0,
            'targets_scored': 0,
            'targets_stored': 0,
            'targets_below_floor': 0,
        }

    def calculate(self, user_id: str, lookback_days: int = LOOKBACK_DAYS) -> int:
        """
        Recalculate and store compound scores for a user.

        Returns:
            Number of scores stored
        """
        now = self.clock()
        since = now - timedelta(days=lookback_days)

        self.logger.info(f"Calculating compound scores for user {user_id} ({lookback_days} days)")

        plays = self.history_store.get_recent_plays(user_id, since, MAX_SOURCE_PLAYS)
        if not plays:
            self.logger.info(f"No recent plays found for user {user_id}")
            return 0

        self.stats['plays_considered'] += len(plays)
        self.logger.debug(f"Found {len(plays)} unique songs played")

        aggregates: Dict[str, dict] = {}

        for play in plays[:MAX_SOURCE_PLAYS]:
            edges = self.similarity_store.get_similar(play.artist, play.title, now)
            edges = [e for e in edges if e.expires_at > now]
            if not edges:
                continue

            self.stats['plays_with_similar'] += 1
            days_since_play = (now - play.last_played_at).total_seconds() / 86400
            weight = recency_weight(days_since_play)
            source_key = f"{play.artist}:{play.title}"

            for edge in edges:
                # Targets outside the library have no track id
                if not edge.target_track_id:
                    continue

                entry = aggregates.get(edge.target_track_id)
                if entry is None:
                    entry = {
                        'artist': edge.target_artist,
                        'title': edge.target_title,
                        'score': 0.0,
                        'recency_weighted_score': 0.0,
                        'sources': set(),
                    }
                    aggregates[edge.target_track_id] = entry

                entry['score'] += edge.match_score
                entry['recency_weighted_score'] += edge.match_score * weight
                entry['sources'].add(source_key)

        self.stats['targets_scored'] += len(aggregates)

        rows = []
        for track_id, entry in aggregates.items():
            if entry['recency_weighted_score'] < MIN_COMPOUND_SCORE:
                self.stats['targets_below_floor'] += 1
                continue
            rows.append(CompoundScore(
                user_id=user_id,
                track_id=track_id,
                artist=entry['artist'],
                title=entry['title'],
                score=entry['score'],
                source_count=len(entry['sources']),
                recency_weighted_score=entry['recency_weighted_score'],
                calculated_at=now,
            ))

        if rows:
            self.score_store.upsert_many(rows)

        self.stats['targets_stored'] += len(rows)
        self.logger.info(f"✓ Stored {len(rows)} compound scores for user {user_id} "
                         f"({len(aggregates)} candidates)")
        return len(rows)

    # ========================================================================
    # READ SIDE
    # ========================================================================

    def get_boost(self, user_id: str, track_id: str) -> float:
        """Normalized 0-1 boost for one track (0 when no score exists)"""
        return self.get_boosts(user_id, [track_id]).get(track_id, 0.0)

    def get_boosts(self, user_id: str, track_ids: Iterable[str]) -> Dict[str, float]:
        """Normalized boosts for several tracks in one store round-trip"""
        track_ids = [t for t in track_ids if t]
        if not track_ids:
            return {}

        return {
            row.track_id: normalize_boost(row.recency_weighted_score)
            for row in self.score_store.get_many(user_id, track_ids)
        }

    def get_top_scored(self, user_id: str, limit: int = MAX_TOP_RESULTS,
                       exclude_track_ids: Sequence[str] = (),
                       exclude_artists: Sequence[str] = (),
                       min_source_count: int = 1) -> List[CompoundScore]:
        """
        Highest recency-weighted scores for a user, with exclusions applied.

        Artist exclusion is case-insensitive containment.
        """
        excluded_ids = set(exclude_track_ids)
        excluded_artists = [a.lower() for a in exclude_artists if a]

        # Over-fetch so exclusions don't starve the result
        rows = self.score_store.get_top(user_id, limit * 2, min_source_count)

        results = []
        for row in rows:
            if row.track_id in excluded_ids:
                continue
            artist_lower = (row.artist or '').lower()
            if any(a in artist_lower for a in excluded_artists):
                continue
            results.append(row)
            if len(results) >= limit:
                break
        return results

    def apply_boost(self, user_id: str, tracks: List[Track],
                    weight: float = DEFAULT_BOOST_WEIGHT) -> List[Track]:
        """
        Reorder tracks blending their current rank with compound boosts.

            combined = rank * (1 - weight) + boost * weight
            rank = 1 - index / len(tracks)

        Returns the original order when weight <= 0 or no track has a boost.
        """
        if not tracks or weight <= 0:
            return list(tracks)

        boosts = self.get_boosts(user_id, [t.id for t in tracks])
        if not boosts:
            return list(tracks)

        total = len(tracks)
        scored = []
        for index, track in enumerate(tracks):
            rank_score = 1 - index / total
            combined = rank_score * (1 - weight) + boosts.get(track.id, 0.0) * weight
            scored.append((combined, -index, track))

        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        self.logger.debug(f"Applied compound boost to {len(boosts)}/{total} tracks")
        return [track for _, _, track in scored]

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    def clear(self, user_id: str) -> None:
        self.score_store.delete_for_user(user_id)
        self.logger.info(f"Cleared compound scores for user {user_id}")

    def purge_stale(self, days_old: int = STALE_SCORE_DAYS) -> int:
        """Delete scores not recalculated within `days_old` days"""
        cutoff = self.clock() - timedelta(days=days_old)
        deleted = self.score_store.delete_older_than(cutoff)
        self.logger.info(f"Purged {deleted} stale compound scores older than {days_old} days")
        return deleted

    def get_stats(self) -> dict:
        return dict(self.stats)
