"""
AI DJ Matching Utilities

Text normalization, edit-distance scoring, genre extraction and blocklist
checks shared by the ranker, the song matcher and the orchestrator.

Functions in this module are stateless and can be used independently.
"""

import re
import logging
from typing import Iterable, List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

logger = logging.getLogger(__name__)


# Canonical genre vocabulary. Suggestion text is scanned for these by
# substring, and the context builder's mood families are drawn from it.
GENRE_VOCABULARY = [
    'rock', 'pop', 'jazz', 'classical', 'electronic', 'hip-hop', 'hip hop', 'rap',
    'country', 'blues', 'metal', 'punk', 'indie', 'alternative', 'folk', 'soul',
    'r&b', 'reggae', 'techno', 'house', 'ambient', 'experimental', 'psychedelic',
    'funk', 'disco', 'grunge', 'emo', 'ska', 'gospel', 'latin', 'world',
]

# Mood families used to pick prompt variations. Every family keyword is either
# a vocabulary genre or a title/artist cue for that family.
MOOD_FAMILIES = {
    'upbeat': ['up', 'energetic', 'dance', 'party', 'fast', 'club', 'remix', 'disco'],
    'chill': ['chill', 'relax', 'slow', 'acoustic', 'unplugged', 'ambient'],
    'rock': ['rock', 'guitar', 'band', 'metal', 'punk', 'indie', 'grunge'],
    'electronic': ['electronic', 'edm', 'techno', 'house', 'dubstep', 'synth'],
    'hip hop': ['hip hop', 'hip-hop', 'rap', 'trap', 'drill', 'freestyle'],
}

# Artist names that are placeholders or compilations rather than a real
# artist. Suggestions attributed to these are never queued.
SYSTEM_BLOCKLIST_PATTERNS = [
    'various artists',
    'unknown artist',
    '[unknown]',
    'multiple artists',
    'compilation',
]

FUZZY_EXACT_SCORE = 1.0
FUZZY_CONTAINS_SCORE = 0.7
FUZZY_MIN_SIMILARITY = 0.6
FUZZY_SIMILARITY_SCALE = 0.5

ARTIST_TITLE_SEPARATOR = ' - '


def normalize_text(text: Optional[str]) -> str:
    """
    Normalize text for comparison.

    Lowercases, maps dash and quote variants to their ASCII forms and
    collapses whitespace. The " - " separator survives so structured
    "Artist - Title" text can still be split afterwards.

    Examples:
        "Pink Floyd – Money" -> "pink floyd - money"
        "  Don’t   Stop " -> "don't stop"
    """
    if not text:
        return ''

    text = text.lower()

    text = text.replace('–', '-')  # en-dash
    text = text.replace('—', '-')  # em-dash
    text = text.replace('‐', '-')  # Unicode hyphen
    text = text.replace('−', '-')  # minus sign

    text = text.replace('’', "'").replace('‘', "'")
    text = text.replace('“', '"').replace('”', '"')

    return ' '.join(text.split())


def tokenize(text: Optional[str]) -> List[str]:
    """Split normalized text on whitespace"""
    return normalize_text(text).split()


def tokens_overlap(word: str, other: str) -> bool:
    """True when either token contains the other (both non-empty)"""
    if not word or not other:
        return False
    return word in other or other in word


def split_artist_title(text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split "Artist - Title" text on the first separator.

    Returns:
        (artist, title) stripped, or (None, None) when there is no separator
        or either side is empty
    """
    if not text or ARTIST_TITLE_SEPARATOR not in text:
        return None, None

    artist, _, title = text.partition(ARTIST_TITLE_SEPARATOR)
    artist = artist.strip()
    title = title.strip()
    if not artist or not title:
        return None, None
    return artist, title


def suggestion_artist(text: Optional[str]) -> str:
    """Normalized text before " - " (the whole text when there is no separator)"""
    if not text:
        return ''
    return normalize_text(text.split(ARTIST_TITLE_SEPARATOR)[0])


# ============================================================================
# EDIT DISTANCE
# ============================================================================

def levenshtein_distance(str1: str, str2: str) -> int:
    """Edit distance between two strings (insert/delete/substitute, cost 1)"""
    return Levenshtein.distance(str1, str2)


def levenshtein_similarity(str1: str, str2: str) -> float:
    """
    Edit distance normalized by the longer string's length.

    Returns:
        1.0 for identical strings, 0.0 for completely different ones
    """
    max_len = max(len(str1), len(str2))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(str1, str2) / max_len


def fuzzy_match(str1: str, str2: str) -> float:
    """
    Tiered fuzzy score between two strings (case-insensitive).

    Tiers:
        exact match -> 1.0
        either contains the other -> 0.7
        Levenshtein similarity above 0.6 -> similarity * 0.5
        otherwise -> 0.0
    """
    lower1 = (str1 or '').lower()
    lower2 = (str2 or '').lower()

    if lower1 == lower2:
        return FUZZY_EXACT_SCORE

    if lower1 and lower2 and (lower2 in lower1 or lower1 in lower2):
        return FUZZY_CONTAINS_SCORE

    similarity = levenshtein_similarity(lower1, lower2)
    if similarity > FUZZY_MIN_SIMILARITY:
        return similarity * FUZZY_SIMILARITY_SCALE
    return 0.0


# ============================================================================
# GENRES AND BLOCKLIST
# ============================================================================

def extract_genres(text: Optional[str]) -> List[str]:
    """
    Find vocabulary genres mentioned anywhere in the text.

    Returns:
        Genres in vocabulary order, each at most once
    """
    lowered = (text or '').lower()
    return [genre for genre in GENRE_VOCABULARY if genre in lowered]


def detect_mood_family(*texts: str) -> Optional[str]:
    """
    Classify a track by title/artist cues into one of MOOD_FAMILIES.

    Families are checked in declaration order; the first family with a
    whole-word cue wins.
    """
    combined = ' '.join(t for t in texts if t).lower()
    if not combined:
        return None

    for family, cues in MOOD_FAMILIES.items():
        for cue in cues:
            if re.search(rf'\b{re.escape(cue)}\b', combined):
                return family
    return None


def is_blocklisted_artist(artist: Optional[str], extra: Iterable[str] = ()) -> bool:
    """
    Check an artist against the system blocklist and an optional user list.

    Args:
        artist: Artist name to check
        extra: Additional lowercase patterns (e.g. a user's personal blocklist)

    Returns:
        True if any pattern is contained in the artist name
    """
    if not artist:
        return False

    artist_lower = artist.lower().strip()
    for pattern in SYSTEM_BLOCKLIST_PATTERNS:
        if pattern in artist_lower:
            return True
    for pattern in extra:
        if pattern and pattern.lower() in artist_lower:
            return True
    return False
