"""
Artist Fatigue Tracking

Keeps the AI DJ from leaning on the same artists over and over.

Two trackers share one interface:
- ArtistFatigueTracker: in-memory recommendation counters with a cooldown
  after every recommendation and daily/session caps. State lives on the
  tracker object; callers decide its lifetime (one per user session).
- HistoryFatigueTracker: durable variant that reads listening history and
  puts an artist on cooldown once too many of their distinct songs were
  played in a rolling window. Safe across multiple app instances.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from dj_models import ArtistFatigueState
from utils.helpers import utc_now

logger = logging.getLogger(__name__)

T = TypeVar('T')

# In-memory tracker limits
ARTIST_COOLDOWN = timedelta(hours=2)
MAX_DAILY_RECOMMENDATIONS = 3
MAX_SESSION_RECOMMENDATIONS = 2
DAY_WINDOW = timedelta(hours=24)

# History-backed tracker limits
HISTORY_LOOKBACK = timedelta(hours=72)
FATIGUE_SONG_THRESHOLD = 8
HISTORY_COOLDOWN = timedelta(hours=48)
FATIGUE_RATIO = 0.8
APPROACHING_RATIO = 0.6


def _artist_key(artist: Optional[str]) -> str:
    return (artist or '').strip().lower()


class FatigueTracker:
    """Common interface for fatigue trackers"""

    def is_fatigued(self, artist: str) -> bool:
        raise NotImplementedError

    def record(self, artist: str) -> None:
        raise NotImplementedError

    def fatigued_artists(self, artists: Iterable[str]) -> set:
        """Lowercased subset of `artists` currently fatigued"""
        return {_artist_key(a) for a in artists if a and self.is_fatigued(a)}

    def filter_fatigued(self, items: List[T], key: Callable[[T], str] = None) -> List[T]:
        """
        Drop items whose artist is fatigued, in one pass.

        Args:
            items: Candidates (tracks, suggestions, dicts...)
            key: Function returning the artist for an item (default: item.artist)
        """
        if not items:
            return list(items)

        key = key or (lambda item: item.artist)
        fatigued = self.fatigued_artists({key(item) for item in items if key(item)})
        kept = [item for item in items if _artist_key(key(item)) not in fatigued]

        if len(kept) < len(items):
            logger.debug(f"Fatigue filter removed {len(items) - len(kept)} candidates "
                         f"({len(fatigued)} fatigued artists)")
        return kept


# ============================================================================
# IN-MEMORY TRACKER
# ============================================================================

class ArtistFatigueTracker(FatigueTracker):
    """
    In-memory artist fatigue state for one user.

    An artist is fatigued when:
    - its cooldown has not expired yet, or
    - it was recommended MAX_DAILY_RECOMMENDATIONS times within the last day, or
    - it was recommended MAX_SESSION_RECOMMENDATIONS times this session
    """

    def __init__(self, cooldown: timedelta = ARTIST_COOLDOWN,
                 max_daily: int = MAX_DAILY_RECOMMENDATIONS,
                 max_session: int = MAX_SESSION_RECOMMENDATIONS,
                 clock: Callable[[], datetime] = None):
        self.cooldown = cooldown
        self.max_daily = max_daily
        self.max_session = max_session
        self.clock = clock or utc_now
        self.states: Dict[str, ArtistFatigueState] = {}

    def _day_count(self, state: ArtistFatigueState, now: datetime) -> int:
        # Day counters roll over a fixed 24h after the last recommendation
        if now - state.last_recommended_at > DAY_WINDOW:
            return 0
        return state.count_today

    def is_fatigued(self, artist: str) -> bool:
        state = self.states.get(_artist_key(artist))
        if state is None:
            return False

        now = self.clock()
        if state.cooldown_until and state.cooldown_until > now:
            return True
        if self._day_count(state, now) >= self.max_daily:
            return True
        return state.count_this_session >= self.max_session

    def record(self, artist: str) -> None:
        key = _artist_key(artist)
        if not key:
            return

        now = self.clock()
        state = self.states.get(key)

        if state is None:
            state = ArtistFatigueState(artist=key, last_recommended_at=now)
            self.states[key] = state
            state.count_today = 1
        elif now - state.last_recommended_at > DAY_WINDOW:
            state.count_today = 1
        else:
            state.count_today += 1

        state.count_this_session += 1
        state.last_recommended_at = now
        state.cooldown_until = now + self.cooldown

        logger.debug(f"Recorded '{key}': today={state.count_today} "
                     f"session={state.count_this_session} cooldown until {state.cooldown_until.isoformat()}")

    def get_state(self, artist: str) -> Optional[ArtistFatigueState]:
        return self.states.get(_artist_key(artist))

    def reset_session(self) -> None:
        """Start a new listening session (daily counters and cooldowns are kept)"""
        for state in self.states.values():
            state.count_this_session = 0
        logger.info(f"Reset session counters for {len(self.states)} artists")

    def get_stats(self) -> Dict[str, List[str]]:
        """
        Summary of tracked artists.

        Returns:
            Dict with 'recent_artists' (recommended within a day),
            'over_recommended_artists' (at a cap) and
            'cooled_down_artists' (cooldown expired)
        """
        now = self.clock()
        stats = {
            'recent_artists': [],
            'over_recommended_artists': [],
            'cooled_down_artists': [],
        }

        for key, state in self.states.items():
            if self._day_count(state, now) > 0:
                stats['recent_artists'].append(key)
            if (self._day_count(state, now) >= self.max_daily
                    or state.count_this_session >= self.max_session):
                stats['over_recommended_artists'].append(key)
            if state.cooldown_until is None or state.cooldown_until <= now:
                stats['cooled_down_artists'].append(key)

        return stats


# ============================================================================
# HISTORY-BACKED TRACKER
# ============================================================================

class HistoryFatigueTracker(FatigueTracker):
    """
    Fatigue derived from listening history.

    Artists with FATIGUE_SONG_THRESHOLD or more distinct songs played within
    the lookback window are on cooldown until their last play plus
    HISTORY_COOLDOWN. The history store is queried once and the snapshot is
    reused until record() invalidates it.
    """

    def __init__(self, history_store, user_id: str,
                 lookback: timedelta = HISTORY_LOOKBACK,
                 song_threshold: int = FATIGUE_SONG_THRESHOLD,
                 cooldown: timedelta = HISTORY_COOLDOWN,
                 clock: Callable[[], datetime] = None):
        self.history_store = history_store
        self.user_id = user_id
        self.lookback = lookback
        self.song_threshold = song_threshold
        self.cooldown = cooldown
        self.clock = clock or utc_now
        self._snapshot: Optional[Dict[str, dict]] = None

    def _load(self) -> Dict[str, dict]:
        if self._snapshot is not None:
            return self._snapshot

        now = self.clock()
        rows = self.history_store.get_artist_play_counts(self.user_id, now - self.lookback)

        snapshot = {}
        for row in rows:
            artist = row.get('artist')
            if not artist:
                continue

            played_songs = int(row.get('played_songs') or 0)
            last_played = row.get('last_played')
            reached = played_songs >= self.song_threshold

            # Library size is unknown here; estimate it from the threshold ratio
            if reached:
                estimated_total = math.ceil(played_songs / FATIGUE_RATIO)
            else:
                estimated_total = played_songs * 2
            fatigue_percentage = played_songs / estimated_total if estimated_total else 0.0

            cooldown_until = last_played + self.cooldown if reached and last_played else None

            snapshot[_artist_key(artist)] = {
                'artist': artist,
                'played_songs': played_songs,
                'total_songs': estimated_total,
                'fatigue_percentage': fatigue_percentage,
                'on_cooldown': bool(cooldown_until and cooldown_until > now),
                'cooldown_until': cooldown_until,
                'last_played': last_played,
            }

        self._snapshot = snapshot
        return snapshot

    def is_fatigued(self, artist: str) -> bool:
        entry = self._load().get(_artist_key(artist))
        return bool(entry and entry['on_cooldown'])

    def record(self, artist: str) -> None:
        # Plays are written by the playback path; just drop the snapshot
        self._snapshot = None

    def get_fatigue(self, artist: str) -> Optional[dict]:
        return self._load().get(_artist_key(artist))

    def get_artists_on_cooldown(self) -> List[str]:
        return [entry['artist'] for entry in self._load().values() if entry['on_cooldown']]

    def get_fatigue_report(self) -> Dict[str, List[dict]]:
        """Artists split into on_cooldown / approaching / healthy"""
        entries = list(self._load().values())
        return {
            'on_cooldown': [e for e in entries if e['on_cooldown']],
            'approaching': [e for e in entries
                            if not e['on_cooldown'] and e['fatigue_percentage'] >= APPROACHING_RATIO],
            'healthy': [e for e in entries if e['fatigue_percentage'] < APPROACHING_RATIO],
        }

    def cooldown_remaining(self, entry: dict) -> timedelta:
        if not entry.get('on_cooldown') or not entry.get('cooldown_until'):
            return timedelta(0)
        return max(timedelta(0), entry['cooldown_until'] - self.clock())

    def format_cooldown_remaining(self, entry: dict) -> str:
        """
        Human-readable cooldown remaining.

        Examples:
            "1d 2h", "3h 5m", "12m", "No cooldown"
        """
        remaining = self.cooldown_remaining(entry)
        if remaining <= timedelta(0):
            return 'No cooldown'

        total_minutes = int(remaining.total_seconds() // 60)
        hours, minutes = divmod(total_minutes, 60)

        if hours > 24:
            days, hours = divmod(hours, 24)
            return f"{days}d {hours}h"
        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"
