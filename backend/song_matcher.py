"""
AI DJ Song Matcher

Resolves free-text suggestions ("Artist - Title", a bare title, or something
vaguer) to concrete library tracks.

Strategies run in order and the first hit wins:
1. exact              - normalized title (or "artist - title") equals the text
2. containment        - title contains the text or the text contains the title
3. structured         - "Artist - Title" parts contained in track artist and title
4. token_overlap      - enough significant words shared with the title
5. artist             - a significant word appears in the track artist
6. diversity_fallback - random track from an under-represented artist

Each strategy is a plain function (text, tracks, accepted, rng) -> Track | None,
so the chain can be tested and extended piece by piece.
"""

import logging
import random
from collections import Counter
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from dj_matching import (
    ARTIST_TITLE_SEPARATOR,
    normalize_text,
    split_artist_title,
    tokenize,
    tokens_overlap,
)
from dj_models import ScoredSuggestion, Track

logger = logging.getLogger(__name__)

MIN_SIGNIFICANT_TOKEN_LENGTH = 3
MIN_SHARED_TOKENS = 2
MAX_ARTIST_REPRESENTATION = 1

StrategyFn = Callable[[str, Sequence[Track], Sequence[Track], random.Random], Optional[Track]]


def _title(track: Track) -> str:
    return normalize_text(track.title)


def _artist(track: Track) -> str:
    return normalize_text(track.artist)


def _significant(tokens: List[str]) -> List[str]:
    return [t for t in tokens if len(t) >= MIN_SIGNIFICANT_TOKEN_LENGTH]


def _shares_title_token(words: List[str], track: Track) -> bool:
    title_tokens = tokenize(track.title)
    return any(tokens_overlap(word, t) for word in words for t in title_tokens)


# ============================================================================
# STRATEGIES
# ============================================================================

def match_exact(text: str, tracks: Sequence[Track], accepted, rng) -> Optional[Track]:
    for track in tracks:
        title = _title(track)
        if title == text:
            return track
        if track.artist and f"{_artist(track)}{ARTIST_TITLE_SEPARATOR}{title}" == text:
            return track
    return None


def match_containment(text: str, tracks: Sequence[Track], accepted, rng) -> Optional[Track]:
    if not text:
        return None
    for track in tracks:
        title = _title(track)
        if title and (text in title or title in text):
            return track
    return None


def match_structured(text: str, tracks: Sequence[Track], accepted, rng) -> Optional[Track]:
    artist_part, title_part = split_artist_title(text)
    if artist_part is None:
        return None

    for track in tracks:
        if artist_part in _artist(track) and title_part in _title(track):
            return track
    return None


def match_token_overlap(text: str, tracks: Sequence[Track], accepted, rng) -> Optional[Track]:
    words = tokenize(text)
    if not words:
        return None

    needed = min(MIN_SHARED_TOKENS, len(words))
    significant = _significant(words)

    for track in tracks:
        title_tokens = tokenize(track.title)
        shared = [w for w in significant if any(tokens_overlap(w, t) for t in title_tokens)]
        if len(shared) >= needed:
            return track
    return None


def match_artist(text: str, tracks: Sequence[Track], accepted, rng) -> Optional[Track]:
    significant = _significant(tokenize(text))
    if not significant:
        return None

    candidates = [t for t in tracks if t.artist and any(w in _artist(t) for w in significant)]
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    for track in candidates:
        if _shares_title_token(significant, track):
            return track
    return candidates[0]


def match_diversity_fallback(text: str, tracks: Sequence[Track], accepted: Sequence[Track],
                             rng: random.Random) -> Optional[Track]:
    accepted_ids = {t.id for t in accepted}
    artist_counts = Counter(_artist(t) for t in accepted if t.artist)

    candidates = [
        t for t in tracks
        if t.artist and t.id not in accepted_ids
        and artist_counts.get(_artist(t), 0) <= MAX_ARTIST_REPRESENTATION
    ]
    if not candidates:
        return None
    return rng.choice(candidates)


MATCH_STRATEGIES: List[Tuple[str, StrategyFn]] = [
    ('exact', match_exact),
    ('containment', match_containment),
    ('structured', match_structured),
    ('token_overlap', match_token_overlap),
    ('artist', match_artist),
    ('diversity_fallback', match_diversity_fallback),
]


# ============================================================================
# MATCHER
# ============================================================================

class SongMatcher:
    """
    Runs the strategy chain and keeps per-strategy stats.

    Args:
        rng: Random source for the diversity fallback
        strategies: Override the strategy chain (name, function) pairs
        logger: Optional logger instance (uses module logger if not provided)
    """

    def __init__(self, rng: random.Random = None,
                 strategies: List[Tuple[str, StrategyFn]] = None, logger=None):
        self.rng = rng or random.Random()
        self.strategies = strategies or MATCH_STRATEGIES
        self.logger = logger or logging.getLogger(__name__)

        self.stats: Dict[str, int] = {name: 0 for name, _ in self.strategies}
        self.stats.update({'no_match': 0, 'duplicates': 0, 'fatigued_discards': 0})

    @staticmethod
    def is_duplicate(track: Track, accepted: Sequence[Track]) -> bool:
        title = _title(track)
        return any(t.id == track.id or _title(t) == title for t in accepted)

    def match_with_strategy(self, text: str, library_tracks: Sequence[Track],
                            accepted: Sequence[Track] = ()) -> Tuple[Optional[Track], Optional[str]]:
        """
        Match text to a library track.

        Returns:
            (track, strategy name), or (None, None) when nothing matched or the
            match duplicates an accepted track
        """
        normalized = normalize_text(text)

        for name, strategy in self.strategies:
            track = strategy(normalized, library_tracks, accepted, self.rng)
            if track is None:
                continue

            if self.is_duplicate(track, accepted):
                self.stats['duplicates'] += 1
                self.logger.debug(f"  ✗ '{text}' -> '{track.title}' by {track.artist} is a duplicate")
                return None, None

            self.stats[name] += 1
            self.logger.debug(f"  ✓ '{text}' -> '{track.title}' by {track.artist} ({name})")
            return track, name

        self.stats['no_match'] += 1
        self.logger.debug(f"  ✗ Could not find '{text}' in library")
        return None, None

    def match(self, text: str, library_tracks: Sequence[Track],
              accepted: Sequence[Track] = ()) -> Optional[Track]:
        track, _ = self.match_with_strategy(text, library_tracks, accepted)
        return track

    def match_batch(self, suggestions: Sequence[ScoredSuggestion], library_tracks: Sequence[Track],
                    batch_size: int, accepted: List[Track] = None,
                    fatigue_tracker=None) -> Tuple[List[Track], int]:
        """
        Match the top `batch_size` suggestions, deduplicating as it goes.

        Args:
            suggestions: Ranked suggestions, best first
            library_tracks: Tracks to match against
            batch_size: Number of tracks wanted
            accepted: Tracks already accepted (extended in place)
            fatigue_tracker: Optional FatigueTracker; a match whose artist is
                fatigued is discarded, and each accepted artist is recorded
                immediately so later suggestions in the batch see it

        Returns:
            (accepted tracks, shortfall against batch_size)
        """
        accepted = accepted if accepted is not None else []

        for suggestion in list(suggestions)[:batch_size]:
            if len(accepted) >= batch_size:
                break
            track = self.match(suggestion.song, library_tracks, accepted)
            if track is None:
                continue
            if fatigue_tracker is not None and track.artist:
                if fatigue_tracker.is_fatigued(track.artist):
                    self.logger.debug(f"  ✗ '{suggestion.song}' -> '{track.title}' by {track.artist} is fatigued")
                    self.stats['fatigued_discards'] += 1
                    continue
                fatigue_tracker.record(track.artist)
            accepted.append(track)

        shortfall = max(0, batch_size - len(accepted))
        self.logger.info(f"Matched {len(accepted)}/{batch_size} tracks from {len(suggestions)} suggestions")
        return accepted, shortfall
