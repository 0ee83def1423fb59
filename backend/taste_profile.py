"""
Taste Profile Service

Builds and caches a per-user summary of the library: how genres are
distributed across artists and which words show up most in artist, album
and track names. The ranker scores language-model suggestions against it.

Profiles are rebuilt wholesale when they are older than 30 minutes, when the
refresh flag is set, or on demand.
"""

import re
import time
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from dj_models import TasteProfile, Track
from navidrome_client import LibraryAPIError
from utils.helpers import utc_now

logger = logging.getLogger(__name__)

ANALYSIS_TIMEOUT = 5  # seconds
PROFILE_MAX_AGE = timedelta(minutes=30)
REFRESH_THRESHOLD = 0.1  # library size change that triggers a rebuild
TOP_KEYWORDS_COUNT = 20

ARTIST_SAMPLE = 100
ALBUM_ARTIST_SAMPLE = 20
ALBUMS_PER_ARTIST = 10
TRACK_SAMPLE = 100

STOP_WORDS = {
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'from', 'as', 'is', 'was', 'are', 'were', 'been',
    'be', 'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'could',
    'should', 'may', 'might', 'must', 'can', 'vol', 'pt', 'part', 'ep', 'single',
}


class LibraryAnalysisError(Exception):
    """Raised when the library cannot be analyzed (API failure or timeout)"""
    def __init__(self, message: str, timed_out: bool = False):
        self.timed_out = timed_out
        super().__init__(message)


# ============================================================================
# PROFILE BUILDING
# ============================================================================

def parse_genres(genres) -> List[str]:
    """
    Normalize artist genre metadata to a list of names.

    Accepts a comma-separated string, a list of strings, or a list of
    {'name': ...} dicts as the library API returns them.
    """
    if not genres:
        return []
    if isinstance(genres, str):
        items = genres.split(',')
    else:
        items = [g.get('name', '') if isinstance(g, dict) else str(g) for g in genres]
    return [g.strip() for g in items if g and g.strip()]


def extract_keywords(text: Optional[str]) -> List[str]:
    """Lowercase words from text without stop-words, short words or pure numbers"""
    if not text:
        return []

    cleaned = re.sub(r'[^\w\s-]', ' ', text.lower())
    return [
        word for word in cleaned.split()
        if len(word) > 2 and word not in STOP_WORDS and not word.isdigit()
    ]


def calculate_genre_distribution(artists: Iterable[dict]) -> Dict[str, float]:
    """Share of each genre across all artist genre tags (shares sum to 1)"""
    counts = Counter()
    for artist in artists:
        counts.update(parse_genres(artist.get('genres')))

    total = sum(counts.values())
    if total == 0:
        return {}
    return {genre: count / total for genre, count in counts.items()}


def extract_top_keywords(artists: Iterable[dict], albums: Iterable[dict], tracks: Iterable[Track],
                         top_n: int = TOP_KEYWORDS_COUNT) -> List[str]:
    counts = Counter()
    for artist in artists:
        counts.update(extract_keywords(artist.get('name')))
    for album in albums:
        counts.update(extract_keywords(album.get('name')))
    for track in tracks:
        counts.update(extract_keywords(track.title))
    return [keyword for keyword, _ in counts.most_common(top_n)]


def build_taste_profile(user_id: str, artists: List[dict], tracks: List[Track],
                        albums: List[dict] = None, now: datetime = None) -> TasteProfile:
    """
    Build a profile from library samples.

    Args:
        user_id: Profile owner
        artists: Artist dicts with 'name' and 'genres'
        tracks: Sampled library tracks
        albums: Album dicts with 'name'
        now: Analysis timestamp
    """
    return TasteProfile(
        user_id=user_id,
        genre_distribution=calculate_genre_distribution(artists),
        top_keywords=extract_top_keywords(artists, albums or [], tracks),
        total_songs=len(tracks),
        last_analyzed=now or utc_now(),
        refresh_needed=False,
    )


# ============================================================================
# SERVICE
# ============================================================================

class TasteProfileService:
    """
    Cached taste profiles backed by a profile store and the library API.

    Args:
        store: Provides get(user_id), upsert(user_id, profile), mark_refresh_needed(user_id)
        library_client: Provides list_artists, list_albums, list_all_tracks
        analysis_timeout: Time limit for one library analysis (seconds)
        clock: Returns the current (timezone-aware) time
    """

    def __init__(self, store, library_client, analysis_timeout: float = ANALYSIS_TIMEOUT,
                 clock: Callable[[], datetime] = None, logger=None):
        self.store = store
        self.library_client = library_client
        self.analysis_timeout = analysis_timeout
        self.clock = clock or utc_now
        self.logger = logger or logging.getLogger(__name__)

    def is_fresh(self, profile: TasteProfile) -> bool:
        if profile.refresh_needed or profile.last_analyzed is None:
            return False
        return self.clock() - profile.last_analyzed <= PROFILE_MAX_AGE

    def get_profile(self, user_id: str) -> Optional[TasteProfile]:
        """Cached profile, or None when missing, stale or flagged for refresh"""
        profile = self.store.get(user_id)
        if profile is None or not self.is_fresh(profile):
            return None
        return profile

    def _check_deadline(self, started: float, step: str):
        if time.monotonic() - started > self.analysis_timeout:
            raise LibraryAnalysisError(
                f"Library analysis timed out ({self.analysis_timeout}s limit) during {step}",
                timed_out=True
            )

    def analyze_library(self, user_id: str) -> TasteProfile:
        """
        Sample the library, build a fresh profile and store it.

        Raises:
            LibraryAnalysisError: On library API failure or when the analysis
                exceeds its time limit
        """
        started = time.monotonic()
        self.logger.info(f"Starting library analysis for user {user_id}")

        try:
            artists = self.library_client.list_artists(0, ARTIST_SAMPLE)
            self.logger.info(f"  ✓ Fetched {len(artists)} artists")
            self._check_deadline(started, 'artists')

            albums = []
            for artist in artists[:ALBUM_ARTIST_SAMPLE]:
                try:
                    albums.extend(self.library_client.list_albums(artist.get('id'), 0, ALBUMS_PER_ARTIST))
                except LibraryAPIError as e:
                    self.logger.debug(f"  Skipping albums for {artist.get('name')}: {e}")
                self._check_deadline(started, 'albums')
            self.logger.info(f"  ✓ Fetched {len(albums)} albums")

            tracks = self.library_client.list_all_tracks(0, TRACK_SAMPLE)
            self.logger.info(f"  ✓ Fetched {len(tracks)} tracks")
            self._check_deadline(started, 'tracks')

        except LibraryAPIError as e:
            raise LibraryAnalysisError(f"Failed to analyze library: {e}") from e

        profile = build_taste_profile(user_id, artists, tracks, albums, now=self.clock())
        self.store.upsert(user_id, profile)

        top_genres = sorted(profile.genre_distribution, key=profile.genre_distribution.get, reverse=True)
        self.logger.info(f"✓ Stored taste profile for user {user_id}: "
                         f"genres={top_genres[:5]} keywords={profile.top_keywords[:5]}")
        return profile

    def get_or_create(self, user_id: str, force_refresh: bool = False) -> TasteProfile:
        if not force_refresh:
            cached = self.get_profile(user_id)
            if cached is not None:
                self.logger.debug(f"Using cached taste profile for user {user_id}")
                return cached

        self.logger.info(f"{'Force refreshing' if force_refresh else 'Creating new'} "
                         f"taste profile for user {user_id}")
        return self.analyze_library(user_id)

    def mark_for_refresh(self, user_id: str, new_song_count: int) -> bool:
        """
        Flag the profile for rebuild if the library size changed by more than 10%.

        Returns:
            True if the profile was flagged
        """
        profile = self.store.get(user_id)
        if profile is None:
            return False

        if profile.total_songs:
            change = abs(new_song_count - profile.total_songs) / profile.total_songs
        else:
            change = 1.0 if new_song_count else 0.0

        if change <= REFRESH_THRESHOLD:
            return False

        self.store.mark_refresh_needed(user_id)
        self.logger.info(f"Marked taste profile for refresh (size changed by {change * 100:.1f}%)")
        return True
