"""
AI DJ Context Builder

Turns playback state (now playing, recent queue, session history and
exclusions) into prompt text for the language model. Pure string assembly.
"""

import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from dj_matching import detect_mood_family
from dj_models import Track

UNKNOWN_ARTIST = 'Unknown Artist'
UNKNOWN_TITLE = 'Unknown Title'

RECENT_QUEUE_LIMIT = 5
MAX_SUMMARY_ARTISTS = 3
UPCOMING_WINDOW = 5

CLOSING_INSTRUCTION = 'Focus on maintaining the current mood and energy level while ensuring variety.'


@dataclass
class PlaybackContext:
    """What the listener is hearing now and what surrounds it"""
    current_track: Track
    recent_queue: List[Track] = field(default_factory=list)
    full_playlist: List[Track] = field(default_factory=list)
    current_index: Optional[int] = None


def check_queue_threshold(current_index: int, playlist_length: int, threshold: int) -> bool:
    """True when the songs remaining after the current one are at or below threshold"""
    remaining = playlist_length - current_index - 1
    return remaining <= threshold


def extract_song_context(track: Track) -> str:
    """
    Examples:
        Currently playing: "Money" by Pink Floyd from album "The Dark Side of the Moon"
    """
    artist = track.artist or UNKNOWN_ARTIST
    title = track.title or UNKNOWN_TITLE

    context = f'Currently playing: "{title}" by {artist}'
    if track.album:
        context += f' from album "{track.album}"'
    return context


def _unique(values) -> List[str]:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def build_recent_queue_context(recent_queue: Sequence[Track], limit: int = RECENT_QUEUE_LIMIT) -> str:
    """Recent artists (up to three) and the artist-diversity percentage"""
    if not recent_queue:
        return ''

    recent = list(recent_queue)[-limit:]
    artists = _unique(t.artist or 'Unknown' for t in recent)
    diversity = len(artists) / len(recent)

    return (f"Recently played: {', '.join(artists[:MAX_SUMMARY_ARTISTS])}. "
            f"Artist diversity: {diversity * 100:.0f}%")


def build_extended_context(full_playlist: Sequence[Track], current_index: int,
                           exclude_ids: Sequence[str] = ()) -> str:
    """Session favourites, repeats of the current artist, upcoming artists and avoided songs"""
    if not full_playlist:
        return ''

    played = list(full_playlist[:current_index + 1])
    upcoming = list(full_playlist[current_index + 1:])
    parts = []

    counts = Counter(t.artist or 'Unknown' for t in played)
    favourites = [artist for artist, _ in counts.most_common(MAX_SUMMARY_ARTISTS)]
    if favourites:
        parts.append(f"Session favorites: {', '.join(favourites)}.")

    if 0 <= current_index < len(full_playlist):
        current_artist = full_playlist[current_index].artist
        repeats = sum(1 for t in played if t.artist == current_artist)
        if current_artist and repeats > 1:
            parts.append(f"{current_artist} played {repeats} times this session.")

    upcoming_artists = _unique(t.artist for t in upcoming[:UPCOMING_WINDOW])
    if upcoming_artists:
        parts.append(f"Upcoming: {', '.join(upcoming_artists[:MAX_SUMMARY_ARTISTS])}.")

    if exclude_ids:
        parts.append(f"Need to avoid {len(exclude_ids)} recently suggested songs.")

    return ' '.join(parts)


def build_exclusion_context(exclude_ids: Sequence[str] = (), exclude_artists: Sequence[str] = ()) -> str:
    parts = []
    if exclude_ids:
        parts.append(f"IMPORTANT: Do NOT recommend these songs that were recently suggested: "
                     f"{', '.join(exclude_ids)}.")
    if exclude_artists:
        parts.append(f"CRITICAL: Do NOT recommend any songs by these artists "
                     f"(they were recently played): {', '.join(exclude_artists)}.")
    return ' '.join(parts)


# ============================================================================
# PROMPT VARIATIONS
# ============================================================================

def _family_prompts(title: str, artist: str) -> Dict[str, List[str]]:
    return {
        'upbeat': [
            f'Find high-energy songs similar to "{title}" by {artist} that keep the upbeat vibe going',
            f'Recommend energetic tracks that match the intensity of "{title}"',
            f'Suggest dance-worthy songs with similar energy to "{title}" by {artist}',
            f'Recommend songs with driving beats and positive energy like "{title}"',
        ],
        'chill': [
            f'Find relaxing songs similar to "{title}" by {artist} for a laid-back setting',
            f'Recommend mellow tracks that match the contemplative mood of "{title}"',
            f'Suggest gentle, calming songs with a similar feel to "{title}" by {artist}',
            f'Find tracks that keep the peaceful atmosphere started by "{title}"',
        ],
        'rock': [
            f'Find rock songs similar to "{title}" by {artist} with guitar-driven energy',
            f'Recommend tracks with rock instrumentation comparable to "{title}" by {artist}',
            f'Suggest songs with similar riffs and rock attitude to "{title}"',
            f'Find tracks that keep the rock atmosphere started by "{title}"',
        ],
        'electronic': [
            f'Find electronic songs similar to "{title}" by {artist} with synthesized energy',
            f'Recommend tracks with electronic production comparable to "{title}" by {artist}',
            f'Suggest songs with similar beats and synth textures to "{title}"',
            f'Find tracks that keep the electronic atmosphere started by "{title}"',
        ],
        'hip hop': [
            f'Find hip hop songs similar to "{title}" by {artist} with the same rhythmic flow',
            f'Recommend tracks with hip hop production comparable to "{title}" by {artist}',
            f'Suggest songs with similar beats and flow to "{title}"',
            f'Find tracks that keep the hip hop atmosphere started by "{title}"',
        ],
    }


def generate_prompt_variations(track: Track) -> List[str]:
    """
    Prompt phrasings chosen by the track's mood family.

    The family is detected from title/artist cues (upbeat, chill, rock,
    electronic, hip hop); anything else gets generic phrasings.
    """
    artist = track.artist or UNKNOWN_ARTIST
    title = track.title or UNKNOWN_TITLE

    family = detect_mood_family(track.title, track.artist)
    if family:
        return _family_prompts(title, artist)[family]

    return [
        f'Find songs similar to "{title}" by {artist} that flow naturally after the current song',
        f'Recommend tracks by artists with a musical style similar to {artist}',
        f'Suggest songs that would appeal to someone who likes "{title}" by {artist}',
        f'Find tracks that complement the current mood of "{title}" by {artist}',
        f'Recommend songs with similar emotional tone and energy to "{title}"',
    ]


def build_prompt(context: PlaybackContext, exclude_ids: Sequence[str] = (),
                 exclude_artists: Sequence[str] = (), rng: random.Random = None) -> str:
    """
    Assemble the full prompt for one recommendation request.

    Args:
        context: Current playback state
        exclude_ids: Track ids suggested recently
        exclude_artists: Artists to keep out of the suggestions
        rng: Random source for picking a prompt variation

    Returns:
        Prompt sentences joined with ". "
    """
    rng = rng or random.Random()

    extended = ''
    if context.full_playlist and context.current_index is not None:
        extended = build_extended_context(context.full_playlist, context.current_index, exclude_ids)

    variation = rng.choice(generate_prompt_variations(context.current_track))

    sections = [
        extract_song_context(context.current_track),
        build_recent_queue_context(context.recent_queue),
        extended,
        build_exclusion_context(exclude_ids, exclude_artists),
        variation,
        CLOSING_INSTRUCTION,
    ]
    return '. '.join(s for s in sections if s)
