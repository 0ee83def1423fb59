"""
AI DJ Service

Orchestrates one round of contextual recommendations:

1. Build a prompt from the playback context
2. Ask the language model for suggestions (bounded timeout, retried while empty)
3. Drop suggestions for excluded songs/artists, fatigued or blocklisted artists
4. Rank by taste profile (degrades to a default score on failure)
5. Match the top suggestions to library tracks and record artist fatigue
6. Fill any shortfall from a relevance-scored random library sample
7. Optionally reorder with compound listening-history boosts
8. Tag every track with shared queue metadata

Failures that leave nothing to queue raise AIDJError; a short batch is a
PARTIAL_SUCCESS.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from dj_context import PlaybackContext, build_prompt
from dj_matching import is_blocklisted_artist, suggestion_artist, tokenize, tokens_overlap
from dj_models import QueueMetadata, RawSuggestion, ScoredSuggestion, Track
from genre_ranker import rank_suggestions
from navidrome_client import LibraryAPIError
from ollama_client import LLMServiceError, LLMTimeoutError
from song_matcher import SongMatcher
from utils.helpers import utc_now

logger = logging.getLogger(__name__)

RECOMMENDATION_TIMEOUT = 10  # seconds
AI_DJ_COOLDOWN = timedelta(seconds=30)
MAX_ATTEMPTS = 3
MAX_BATCH_SIZE = 10
LIBRARY_SAMPLE_SIZE = 2000
DEFAULT_GENRE_SCORE = 0.5

FALLBACK_MIN_SAMPLE = 200
FALLBACK_SAMPLE_MULTIPLIER = 20
FALLBACK_ARTIST_BONUS = 0.2
FALLBACK_TITLE_BONUS = 0.1

STATUS_SUCCESS = 'SUCCESS'
STATUS_PARTIAL_SUCCESS = 'PARTIAL_SUCCESS'


class AIDJError(Exception):
    """Raised when a recommendation round cannot produce anything to queue"""

    TIMEOUT = 'TIMEOUT'
    NO_RECOMMENDATIONS = 'NO_RECOMMENDATIONS'
    NO_LIBRARY_MATCH = 'NO_LIBRARY_MATCH'

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


@dataclass
class RecommendationOptions:
    exclude_ids: List[str] = field(default_factory=list)
    exclude_artists: List[str] = field(default_factory=list)
    user_blocklist: List[str] = field(default_factory=list)
    use_compound_boost: bool = True


@dataclass
class RecommendationResult:
    status: str
    tracks: List[Track]
    shortfall: int
    queue_metadata: List[QueueMetadata]

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'shortfall': self.shortfall,
            'tracks': [
                dict(track.to_dict(), queue_metadata=meta.to_dict())
                for track, meta in zip(self.tracks, self.queue_metadata)
            ],
        }


def tag_for_queue(tracks: Sequence[Track], now: datetime = None) -> List[QueueMetadata]:
    """One metadata record per track, all sharing a single timestamp"""
    queued_at = now or utc_now()
    return [QueueMetadata(queued_at=queued_at) for _ in tracks]


def check_cooldown(last_queue_time: Optional[datetime], cooldown: timedelta = AI_DJ_COOLDOWN,
                   now: datetime = None) -> bool:
    """True if enough time has passed since the last AI DJ queue operation"""
    if last_queue_time is None:
        return True
    return (now or utc_now()) - last_queue_time >= cooldown


def _words_overlap(words: List[str], others: List[str]) -> bool:
    return any(
        len(word) > 2 and any(tokens_overlap(word, other) for other in others)
        for word in words
    )


class AIDJService:
    """
    Contextual recommendation orchestrator.

    Args:
        llm_client: Provides generate(prompt, user_id, exclude_artists, timeout)
        library_client: Provides list_all_tracks(offset, limit)
        fatigue_tracker: Artist fatigue state for this listener
        profile_service: Optional TasteProfileService for ranking
        compound_scorer: Optional CompoundScorer for history boosts
        matcher: Song matcher (default: SongMatcher sharing `rng`)
        rng: Random source for prompt variation, matching and fallback
        clock: Returns the current (timezone-aware) time
    """

    def __init__(self, llm_client, library_client, fatigue_tracker,
                 profile_service=None, compound_scorer=None, matcher: SongMatcher = None,
                 rng: random.Random = None, clock: Callable[[], datetime] = None,
                 timeout: float = RECOMMENDATION_TIMEOUT, max_attempts: int = MAX_ATTEMPTS,
                 library_sample_size: int = LIBRARY_SAMPLE_SIZE, logger=None):
        self.llm_client = llm_client
        self.library_client = library_client
        self.fatigue_tracker = fatigue_tracker
        self.profile_service = profile_service
        self.compound_scorer = compound_scorer
        self.rng = rng or random.Random()
        self.matcher = matcher or SongMatcher(rng=self.rng)
        self.clock = clock or utc_now
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.library_sample_size = library_sample_size
        self.logger = logger or logging.getLogger(__name__)

        self.stats = {
            'rounds': 0,
            'llm_attempts': 0,
            'suggestions_received': 0,
            'suggestions_filtered': 0,
            'tracks_matched': 0,
            'tracks_fallback': 0,
            'ranking_degraded': 0,
        }

    # ========================================================================
    # STEPS
    # ========================================================================

    def _fetch_suggestions(self, context: PlaybackContext, user_id: Optional[str],
                           options: RecommendationOptions) -> List[RawSuggestion]:
        for attempt in range(1, self.max_attempts + 1):
            self.stats['llm_attempts'] += 1
            prompt = build_prompt(context, options.exclude_ids, options.exclude_artists, self.rng)
            self.logger.info(f"AI DJ recommendation attempt {attempt}/{self.max_attempts}")
            self.logger.debug(f"Prompt: {prompt}")

            try:
                suggestions = self.llm_client.generate(
                    prompt,
                    user_id=user_id,
                    exclude_artists=list(options.exclude_artists),
                    timeout=self.timeout,
                )
            except LLMTimeoutError as e:
                raise AIDJError(AIDJError.TIMEOUT, f"AI DJ recommendation request timed out: {e}") from e
            except LLMServiceError as e:
                raise AIDJError(AIDJError.TIMEOUT, f"AI DJ recommendation request failed: {e}") from e

            if suggestions:
                self.stats['suggestions_received'] += len(suggestions)
                return suggestions

            self.logger.warning(f"✗ No suggestions returned (attempt {attempt}/{self.max_attempts})")

        raise AIDJError(AIDJError.NO_RECOMMENDATIONS, "AI DJ could not generate recommendations")

    def _load_library(self) -> List[Track]:
        try:
            return self.library_client.list_all_tracks(0, self.library_sample_size)
        except LibraryAPIError as e:
            self.logger.error(f"✗ Could not load library tracks: {e}")
            return []

    def _is_excluded_track(self, track: Track, options: RecommendationOptions) -> bool:
        if track.id in options.exclude_ids:
            return True
        artist_lower = (track.artist or '').lower()
        if any(a and a.lower() in artist_lower for a in options.exclude_artists):
            return True
        return is_blocklisted_artist(track.artist, options.user_blocklist)

    def filter_suggestions(self, suggestions: Sequence[RawSuggestion], library: Sequence[Track],
                           options: RecommendationOptions) -> List[RawSuggestion]:
        """
        Drop suggestions for excluded artists, fatigued or blocklisted artists,
        and songs already excluded by id.
        """
        excluded_tracks = [t for t in library if t.id in set(options.exclude_ids)]
        excluded_artists = [a.lower() for a in options.exclude_artists if a]
        kept = []

        for suggestion in suggestions:
            text = suggestion.song.lower()
            artist = suggestion_artist(suggestion.song)

            if artist and any(excluded in artist for excluded in excluded_artists):
                self.logger.debug(f"Skipping '{suggestion.song}' - artist '{artist}' is excluded")
                continue
            if artist and self.fatigue_tracker.is_fatigued(artist):
                self.logger.debug(f"Skipping '{suggestion.song}' - artist '{artist}' is in cooldown")
                continue
            if artist and is_blocklisted_artist(artist, options.user_blocklist):
                self.logger.debug(f"Skipping '{suggestion.song}' - artist '{artist}' is blocklisted")
                continue
            if self._mentions_excluded_track(text, excluded_tracks):
                self.logger.debug(f"Skipping '{suggestion.song}' - matches a recently suggested song")
                continue
            kept.append(suggestion)

        self.stats['suggestions_filtered'] += len(suggestions) - len(kept)
        return kept

    @staticmethod
    def _mentions_excluded_track(text: str, excluded_tracks: Sequence[Track]) -> bool:
        for track in excluded_tracks:
            title = (track.title or '').lower()
            artist = (track.artist or '').lower()
            if title and (title in text or text in title):
                return True
            if artist and (artist in text or text in artist):
                return True
        return False

    def rank(self, suggestions: List[RawSuggestion], user_id: Optional[str]) -> List[ScoredSuggestion]:
        unranked = [ScoredSuggestion.from_raw(s, DEFAULT_GENRE_SCORE) for s in suggestions]
        if not user_id or self.profile_service is None:
            return unranked

        try:
            profile = self.profile_service.get_or_create(user_id)
            ranked = rank_suggestions(profile, suggestions)
        except Exception as e:
            self.stats['ranking_degraded'] += 1
            self.logger.warning(f"RANKING_DEGRADED: genre ranking failed, using raw suggestions ({e})")
            return unranked

        if ranked:
            average = sum(s.genre_score for s in ranked) / len(ranked)
            self.logger.info(f"Genre ranking kept {len(ranked)}/{len(suggestions)} suggestions "
                             f"(avg score: {average:.2f})")
        return ranked

    def fill_from_library(self, context: PlaybackContext, accepted: List[Track], needed: int,
                          batch_size: int, options: RecommendationOptions) -> List[Track]:
        """
        Pick `needed` extra tracks from a library sample, preferring artists or
        titles that share words with the current song. Never raises.
        """
        sample_size = max(batch_size * FALLBACK_SAMPLE_MULTIPLIER, FALLBACK_MIN_SAMPLE)
        try:
            sample = self.library_client.list_all_tracks(0, sample_size)
        except LibraryAPIError as e:
            self.logger.error(f"✗ Failed to get fallback songs: {e}")
            return []

        sample = self.fatigue_tracker.filter_fatigued(sample, key=lambda t: t.artist)
        accepted_ids = {t.id for t in accepted}
        accepted_artists = {t.artist.lower() for t in accepted if t.artist}

        current = context.current_track
        current_artist = (current.artist or '').lower()
        current_artist_words = tokenize(current_artist)
        current_title_words = tokenize(current.title)

        scored = []
        for track in sample:
            if track.id in accepted_ids or track.id == current.id:
                continue
            if (track.artist or '').lower() in accepted_artists:
                continue
            if self._is_excluded_track(track, options):
                continue

            score = self.rng.random()
            track_artist = (track.artist or '').lower()
            if track_artist != current_artist and _words_overlap(current_artist_words, tokenize(track_artist)):
                score += FALLBACK_ARTIST_BONUS
            if _words_overlap(current_title_words, tokenize(track.title)):
                score += FALLBACK_TITLE_BONUS
            scored.append((score, track))

        scored.sort(key=lambda item: item[0], reverse=True)

        picked = []
        picked_artists = set()
        for _, track in scored:
            if len(picked) >= needed:
                break
            artist_key = (track.artist or '').lower()
            if artist_key in picked_artists:
                continue
            picked_artists.add(artist_key)
            picked.append(track)

        self.logger.info(f"Added {len(picked)} fallback songs from library (relevance-scored)")
        return picked

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def recommend(self, context: PlaybackContext, batch_size: int, user_id: str = None,
                  options: RecommendationOptions = None) -> RecommendationResult:
        """
        Run one recommendation round.

        Args:
            context: Current playback state
            batch_size: Number of tracks wanted (1-10)
            user_id: Listener, for taste ranking and compound boosts
            options: Exclusions and feature switches

        Returns:
            RecommendationResult with SUCCESS or PARTIAL_SUCCESS status

        Raises:
            AIDJError: TIMEOUT, NO_RECOMMENDATIONS or NO_LIBRARY_MATCH
            ValueError: If batch_size is outside 1-10
        """
        if not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {batch_size}")

        options = options or RecommendationOptions()
        self.stats['rounds'] += 1

        suggestions = self._fetch_suggestions(context, user_id, options)
        library = self._load_library()

        filtered = self.filter_suggestions(suggestions, library, options)
        ranked = self.rank(filtered, user_id)

        pool = [
            t for t in library
            if t.id != context.current_track.id and not self._is_excluded_track(t, options)
        ]
        pool = self.fatigue_tracker.filter_fatigued(pool, key=lambda t: t.artist)

        accepted, shortfall = self.matcher.match_batch(ranked, pool, batch_size, accepted=[],
                                                       fatigue_tracker=self.fatigue_tracker)
        self.stats['tracks_matched'] += len(accepted)

        if shortfall > 0:
            self.logger.warning(f"Need {shortfall} more songs, using fallback from library")
            extra = self.fill_from_library(context, accepted, shortfall, batch_size, options)
            accepted.extend(extra)
            self.stats['tracks_fallback'] += len(extra)

        if not accepted:
            raise AIDJError(AIDJError.NO_LIBRARY_MATCH,
                            "AI DJ could not match recommendations to library songs "
                            "and no fallback songs are available")

        if user_id and self.compound_scorer is not None and options.use_compound_boost:
            try:
                accepted = self.compound_scorer.apply_boost(user_id, accepted)
            except Exception as e:
                self.logger.warning(f"Compound boost skipped: {e}")

        shortfall = max(0, batch_size - len(accepted))
        status = STATUS_PARTIAL_SUCCESS if shortfall else STATUS_SUCCESS
        metadata = tag_for_queue(accepted, now=self.clock())

        self.logger.info(f"✓ AI DJ generated {len(accepted)}/{batch_size} recommendations ({status})")
        return RecommendationResult(status=status, tracks=accepted, shortfall=shortfall,
                                    queue_metadata=metadata)

    def get_contextual_recommendations(self, context: PlaybackContext, batch_size: int,
                                       user_id: str = None, exclude_ids: Sequence[str] = (),
                                       exclude_artists: Sequence[str] = ()) -> List[Track]:
        """List-returning convenience wrapper around recommend()"""
        options = RecommendationOptions(exclude_ids=list(exclude_ids),
                                        exclude_artists=list(exclude_artists))
        return self.recommend(context, batch_size, user_id=user_id, options=options).tracks
