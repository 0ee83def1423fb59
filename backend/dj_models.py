"""
AI DJ Domain Records

Plain dataclasses shared by the matcher, ranker, scorers and the
orchestrator. Library tracks are immutable snapshots; everything else is a
short-lived value object built per request or per recalculation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Track:
    """A library track as returned by the library API"""
    id: str
    title: str
    artist: str = ''
    album: str = ''
    duration: int = 0
    stream_url: str = ''

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'artist': self.artist,
            'album': self.album,
            'duration': self.duration,
            'stream_url': self.stream_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Track':
        """Build a Track from an API/JSON payload ('name' is accepted for 'title')"""
        return cls(
            id=str(data.get('id', '')),
            title=data.get('title') or data.get('name') or '',
            artist=data.get('artist') or '',
            album=data.get('album') or '',
            duration=int(data.get('duration') or 0),
            stream_url=data.get('stream_url') or data.get('url') or '',
        )


@dataclass
class RawSuggestion:
    """One language-model suggestion, usually "Artist - Title" free text"""
    song: str
    explanation: str = ''


@dataclass
class ScoredSuggestion:
    song: str
    explanation: str
    genre_score: float

    @classmethod
    def from_raw(cls, raw: RawSuggestion, genre_score: float) -> 'ScoredSuggestion':
        return cls(song=raw.song, explanation=raw.explanation, genre_score=genre_score)


@dataclass
class TasteProfile:
    """
    Per-user genre/keyword summary of the library.

    Profiles are rebuilt wholesale; callers never patch individual fields
    other than through the store's refresh flag.
    """
    user_id: str
    genre_distribution: Dict[str, float] = field(default_factory=dict)
    top_keywords: List[str] = field(default_factory=list)
    total_songs: int = 0
    last_analyzed: Optional[datetime] = None
    refresh_needed: bool = False


@dataclass
class ArtistFatigueState:
    artist: str
    last_recommended_at: datetime
    count_today: int = 0
    count_this_session: int = 0
    cooldown_until: Optional[datetime] = None


@dataclass
class ListeningPlay:
    """Most recent play of one (artist, title) group from listening history"""
    artist: str
    title: str
    last_played_at: datetime
    track_id: Optional[str] = None


@dataclass
class SimilarityEdge:
    source_artist: str
    source_title: str
    target_artist: str
    target_title: str
    match_score: float
    expires_at: datetime
    target_track_id: Optional[str] = None


@dataclass
class CompoundScore:
    user_id: str
    track_id: str
    artist: str
    title: str
    score: float
    source_count: int
    recency_weighted_score: float
    calculated_at: Optional[datetime] = None


@dataclass
class ArtistAffinity:
    user_id: str
    artist: str
    affinity_score: float
    play_count: int
    calculated_at: Optional[datetime] = None


@dataclass
class QueueMetadata:
    queued_at: datetime
    ai_queued: bool = True
    queued_by: str = 'ai-dj'

    def to_dict(self) -> dict:
        return {
            'ai_queued': self.ai_queued,
            'queued_at': self.queued_at.isoformat(),
            'queued_by': self.queued_by,
        }
