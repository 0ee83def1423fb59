"""
Full User Profile Recalculation

Runs every per-user precomputation the AI DJ relies on:
1. Taste profile (forced library re-analysis)
2. Compound scores from recent listening history
3. Artist affinities (play counts normalized to the user's top artist)
4. Purge of compound scores nobody recalculated for a month

Steps are independent: one failing does not stop the others. The summary
lists which steps failed so callers (route, CLI) can report it.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List

from dj_models import ArtistAffinity
from utils.helpers import utc_now

logger = logging.getLogger(__name__)

AFFINITY_WINDOW = timedelta(days=90)


def calculate_artist_affinities(user_id: str, play_counts: List[dict],
                                now: datetime) -> List[ArtistAffinity]:
    """
    Turn per-artist play counts into affinities in (0, 1].

    The most played artist gets 1.0; everyone else is scaled against it.
    """
    counted = [
        (row['artist'], int(row.get('total_plays') or row.get('played_songs') or 0))
        for row in play_counts
        if row.get('artist')
    ]
    counted = [(artist, plays) for artist, plays in counted if plays > 0]
    if not counted:
        return []

    top_plays = max(plays for _, plays in counted)
    affinities = [
        ArtistAffinity(
            user_id=user_id,
            artist=artist,
            affinity_score=round(plays / top_plays, 4),
            play_count=plays,
            calculated_at=now,
        )
        for artist, plays in counted
    ]
    affinities.sort(key=lambda a: a.affinity_score, reverse=True)
    return affinities


def calculate_full_user_profile(user_id: str, profile_service=None, compound_scorer=None,
                                history_store=None, affinity_store=None,
                                clock: Callable[[], datetime] = None) -> dict:
    """
    Recalculate everything precomputed for one user.

    Any collaborator left as None skips its step.

    Args:
        user_id: User to recalculate
        profile_service: TasteProfileService
        compound_scorer: CompoundScorer
        history_store: Provides get_artist_play_counts(user_id, since)
        affinity_store: Provides replace_for_user(user_id, affinities)
        clock: Returns the current (timezone-aware) time

    Returns:
        Summary dict with per-step results and 'failed_steps'
    """
    clock = clock or utc_now
    summary = {
        'user_id': user_id,
        'taste_profile': None,
        'compound_scores': 0,
        'artist_affinities': 0,
        'stale_scores_purged': 0,
        'failed_steps': [],
    }

    logger.info(f"Recalculating full profile for user {user_id}")

    if profile_service is not None:
        try:
            profile = profile_service.get_or_create(user_id, force_refresh=True)
            summary['taste_profile'] = {
                'total_songs': profile.total_songs,
                'genres': len(profile.genre_distribution),
                'keywords': len(profile.top_keywords),
            }
            logger.info(f"  ✓ Taste profile refreshed")
        except Exception as e:
            logger.error(f"  ✗ Taste profile refresh failed: {e}")
            summary['failed_steps'].append('taste_profile')

    if compound_scorer is not None:
        try:
            summary['compound_scores'] = compound_scorer.calculate(user_id)
            logger.info(f"  ✓ {summary['compound_scores']} compound scores stored")
        except Exception as e:
            logger.error(f"  ✗ Compound score calculation failed: {e}")
            summary['failed_steps'].append('compound_scores')

    if history_store is not None and affinity_store is not None:
        try:
            now = clock()
            play_counts = history_store.get_artist_play_counts(user_id, now - AFFINITY_WINDOW)
            affinities = calculate_artist_affinities(user_id, play_counts, now)
            summary['artist_affinities'] = affinity_store.replace_for_user(user_id, affinities)
            logger.info(f"  ✓ {summary['artist_affinities']} artist affinities stored")
        except Exception as e:
            logger.error(f"  ✗ Artist affinity calculation failed: {e}")
            summary['failed_steps'].append('artist_affinities')

    if compound_scorer is not None:
        try:
            summary['stale_scores_purged'] = compound_scorer.purge_stale()
        except Exception as e:
            logger.error(f"  ✗ Stale score purge failed: {e}")
            summary['failed_steps'].append('stale_score_purge')

    if summary['failed_steps']:
        logger.warning(f"Profile recalculation for user {user_id} finished with failures: "
                       f"{', '.join(summary['failed_steps'])}")
    else:
        logger.info(f"✓ Profile recalculation complete for user {user_id}")

    return summary
