"""
Genre/Keyword Ranker

Scores language-model suggestions against a user's taste profile and picks
an artist-diverse, thresholded subset for the song matcher.

Scoring:
- Genre score: best (profile weight * match strength) over every pair of
  genres found in the suggestion text and genres in the profile
- Keyword score: fraction of profile keywords found (fuzzily) in the text
- Combined: 0.8 * genre + 0.2 * keyword
"""

import logging
from typing import Dict, List, Sequence

from dj_matching import (
    extract_genres,
    fuzzy_match,
    suggestion_artist,
    tokenize,
)
from dj_models import RawSuggestion, ScoredSuggestion, TasteProfile

logger = logging.getLogger(__name__)

GENRE_WEIGHT = 0.8
KEYWORD_WEIGHT = 0.2

GENRE_EXACT_STRENGTH = 1.0
GENRE_PARTIAL_STRENGTH = 0.5

# Any accepted fuzzy tier (0.3 is the floor of the scaled Levenshtein tier)
KEYWORD_MATCH_BAR = 0.3

DEFAULT_THRESHOLD = 0.3
RELAXED_THRESHOLD = 0.2
MIN_RESULTS_BEFORE_RELAX = 3
MAX_RESULTS = 10

NEW_ARTIST_BONUS = 0.15
REPEAT_ARTIST_PENALTY = 0.2


def calculate_genre_score(library_genres: Dict[str, float], recommendation_genres: List[str]) -> float:
    """
    Best weighted genre match between the library and a recommendation.

    Returns:
        0.0 (no match) to 1.0 (a genre that makes up the whole library)
    """
    if not library_genres or not recommendation_genres:
        return 0.0

    best_score = 0.0
    for rec_genre in recommendation_genres:
        rec_lower = rec_genre.lower()
        for lib_genre, weight in library_genres.items():
            lib_lower = lib_genre.lower()

            if rec_lower == lib_lower:
                strength = GENRE_EXACT_STRENGTH
            elif rec_lower in lib_lower or lib_lower in rec_lower:
                strength = GENRE_PARTIAL_STRENGTH
            else:
                continue

            best_score = max(best_score, weight * strength)

    return best_score


def _keyword_clears_bar(keyword: str, text: str, tokens: List[str]) -> bool:
    keyword_lower = keyword.lower()
    if keyword_lower in text:
        return True

    best = fuzzy_match(text, keyword_lower)
    for token in tokens:
        if best >= KEYWORD_MATCH_BAR:
            break
        best = max(best, fuzzy_match(token, keyword_lower))
    return best >= KEYWORD_MATCH_BAR


def calculate_keyword_score(library_keywords: Sequence[str], recommendation_text: str) -> float:
    """
    Fraction of library keywords that appear (exactly or fuzzily) in the text.
    """
    if not library_keywords:
        return 0.0

    text = (recommendation_text or '').lower()
    tokens = tokenize(text)
    matched = sum(1 for keyword in library_keywords if _keyword_clears_bar(keyword, text, tokens))
    return matched / len(library_keywords)


def calculate_genre_similarity(profile: TasteProfile, suggestion: RawSuggestion) -> float:
    """
    Combined taste-fit score for one suggestion.

    Args:
        profile: The user's taste profile
        suggestion: Raw language-model suggestion

    Returns:
        0.8 * genre score + 0.2 * keyword score
    """
    text = f"{suggestion.song} {suggestion.explanation}"
    genres = extract_genres(text)

    genre_score = calculate_genre_score(profile.genre_distribution, genres)
    keyword_score = calculate_keyword_score(profile.top_keywords, text)
    final_score = genre_score * GENRE_WEIGHT + keyword_score * KEYWORD_WEIGHT

    logger.debug(f"Genre similarity for '{suggestion.song}': genre={genre_score:.2f} "
                 f"keyword={keyword_score:.2f} final={final_score:.2f} genres={genres}")
    return final_score


def diversity_bonus(artist_count: int) -> float:
    """Adjustment for an artist already picked `artist_count` times"""
    if artist_count == 0:
        return NEW_ARTIST_BONUS
    if artist_count == 1:
        return 0.0
    return -REPEAT_ARTIST_PENALTY * artist_count


def _select_diverse(scored: List[ScoredSuggestion], threshold: float) -> List[ScoredSuggestion]:
    """
    Greedy selection re-weighting each candidate by how often its artist
    has already been picked.
    """
    remaining = list(scored)
    selected: List[ScoredSuggestion] = []
    artist_counts: Dict[str, int] = {}

    while remaining and len(selected) < MAX_RESULTS:
        best_index = 0
        best_adjusted = None
        for index, candidate in enumerate(remaining):
            artist = suggestion_artist(candidate.song)
            adjusted = candidate.genre_score + diversity_bonus(artist_counts.get(artist, 0))
            if best_adjusted is None or adjusted > best_adjusted:
                best_index = index
                best_adjusted = adjusted

        if best_adjusted < threshold:
            break

        chosen = remaining.pop(best_index)
        artist = suggestion_artist(chosen.song)
        artist_counts[artist] = artist_counts.get(artist, 0) + 1
        selected.append(chosen)

    return selected


def rank_suggestions(
    profile: TasteProfile,
    suggestions: Sequence[RawSuggestion],
    threshold: float = DEFAULT_THRESHOLD,
) -> List[ScoredSuggestion]:
    """
    Rank suggestions by taste fit with artist diversity.

    When fewer than three suggestions survive the diversity pass, the
    diversity weighting is dropped and the top suggestions at the relaxed
    threshold are returned by raw score instead, so the pipeline always has
    something to match.

    Returns:
        At most 10 scored suggestions, best first
    """
    scored = [
        ScoredSuggestion.from_raw(suggestion, calculate_genre_similarity(profile, suggestion))
        for suggestion in suggestions
    ]
    scored.sort(key=lambda s: s.genre_score, reverse=True)

    selected = _select_diverse(scored, threshold)
    if len(selected) >= MIN_RESULTS_BEFORE_RELAX:
        logger.info(f"Genre ranking: {len(selected)}/{len(suggestions)} suggestions passed threshold {threshold}")
        return selected

    relaxed = [s for s in scored if s.genre_score >= RELAXED_THRESHOLD][:MAX_RESULTS]
    logger.info(f"Relaxed genre threshold from {threshold} to {RELAXED_THRESHOLD} - "
                f"got {len(relaxed)} suggestions")
    return relaxed
