"""
AI DJ Routes

This module exposes the recommendation engine over HTTP:
- POST /dj/recommendations - Contextual batch of library tracks to queue
- POST /dj/profile/recalculate - Rebuild taste profile, compound scores and affinities
- GET /dj/fatigue/<user_id> - Artist fatigue summary for a listener

Fatigue trackers live in a process-level registry keyed by user, so repeated
requests from one listener share cooldowns within a worker.
"""

from flask import Blueprint, jsonify, request, current_app
import logging
import threading
from datetime import timedelta

from ai_dj import AIDJError, AIDJService, RecommendationOptions, check_cooldown
from artist_fatigue import ArtistFatigueTracker
from compound_scoring import CompoundScorer
from config import load_dj_settings
from dj_context import PlaybackContext
from dj_db import (ArtistAffinityStore, CompoundScoreStore, ListeningHistoryStore,
                   SimilarityStore, TasteProfileStore)
from dj_models import Track
from navidrome_client import NavidromeClient
from ollama_client import OllamaClient
from taste_profile import TasteProfileService
from user_profile import calculate_full_user_profile
from utils.helpers import safe_int, safe_strip, utc_now

logger = logging.getLogger(__name__)
dj_bp = Blueprint('dj', __name__)

ANONYMOUS_USER = 'anonymous'


# =============================================================================
# PER-PROCESS STATE
# =============================================================================

class FatigueRegistry:
    """One ArtistFatigueTracker per listener, created on first use"""

    def __init__(self, factory=ArtistFatigueTracker):
        self.factory = factory
        self.trackers = {}
        self.lock = threading.Lock()

    def get(self, user_id: str) -> ArtistFatigueTracker:
        with self.lock:
            tracker = self.trackers.get(user_id)
            if tracker is None:
                tracker = self.factory()
                self.trackers[user_id] = tracker
            return tracker

    def peek(self, user_id: str):
        with self.lock:
            return self.trackers.get(user_id)

    def clear(self):
        with self.lock:
            self.trackers.clear()


class QueueCooldowns:
    """Last successful AI DJ queue time per listener; expired entries are dropped on write"""

    def __init__(self):
        self.times = {}
        self.lock = threading.Lock()

    def ready(self, listener: str, cooldown: timedelta, now=None) -> bool:
        with self.lock:
            last = self.times.get(listener)
        return check_cooldown(last, cooldown, now=now)

    def mark(self, listener: str, cooldown: timedelta, now=None):
        now = now or utc_now()
        with self.lock:
            expired = [key for key, last in self.times.items() if now - last >= cooldown]
            for key in expired:
                del self.times[key]
            if cooldown > timedelta(0):
                self.times[listener] = now

    def clear(self):
        with self.lock:
            self.times.clear()

    def __contains__(self, listener) -> bool:
        with self.lock:
            return listener in self.times

    def __len__(self) -> int:
        with self.lock:
            return len(self.times)


fatigue_registry = FatigueRegistry()
last_queue_times = QueueCooldowns()


def _settings():
    return current_app.config.get('DJ_SETTINGS') or load_dj_settings()


def build_profile_service(settings=None) -> TasteProfileService:
    settings = settings or load_dj_settings()
    return TasteProfileService(TasteProfileStore(), NavidromeClient(),
                               analysis_timeout=settings.analysis_timeout_seconds)


def build_compound_scorer() -> CompoundScorer:
    return CompoundScorer(ListeningHistoryStore(), SimilarityStore(), CompoundScoreStore())


def build_dj_service(user_id: str, settings=None) -> AIDJService:
    """Wire the orchestrator to the live library, model server and database"""
    settings = settings or load_dj_settings()
    library = NavidromeClient()
    return AIDJService(
        llm_client=OllamaClient(library_client=library),
        library_client=library,
        fatigue_tracker=fatigue_registry.get(user_id),
        profile_service=build_profile_service(settings),
        compound_scorer=build_compound_scorer(),
        timeout=settings.timeout_seconds,
        max_attempts=settings.max_attempts,
    )


# =============================================================================
# REQUEST PARSING
# =============================================================================

def _parse_track(data) -> Track:
    if not isinstance(data, dict):
        raise ValueError("track must be an object")
    track = Track.from_dict(data)
    if not track.id:
        raise ValueError("track id is required")
    return track


def _parse_tracks(items) -> list:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError("track lists must be arrays")
    return [_parse_track(item) for item in items]


def _parse_strings(items) -> list:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError("exclusion lists must be arrays")
    return [str(item) for item in items if safe_strip(str(item))]


# =============================================================================
# RECOMMENDATIONS
# =============================================================================

@dj_bp.route('/dj/recommendations', methods=['POST'])
def get_recommendations():
    """
    Generate a batch of AI DJ recommendations

    Request body:
        {
            "user_id": "abc",
            "batch_size": 5,
            "current_track": {"id": "1", "title": "Money", "artist": "Pink Floyd"},
            "recent_queue": [...],
            "full_playlist": [...],
            "current_index": 3,
            "exclude_song_ids": ["42"],
            "exclude_artists": ["Queen"],
            "user_blocklist": ["Some Artist"]
        }

    Returns:
        200: {"status": "SUCCESS" | "PARTIAL_SUCCESS", "shortfall": 0, "tracks": [...]}
        400: Invalid request
        422: Nothing could be recommended
        429: AI DJ cooldown still active
        504: Language model timed out
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'JSON body required'}), 400

    settings = _settings()
    user_id = safe_strip(data.get('user_id'))

    batch_size = data.get('batch_size', settings.batch_size)
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or not 1 <= batch_size <= 10:
        return jsonify({'error': 'batch_size must be an integer between 1 and 10'}), 400

    try:
        context = PlaybackContext(
            current_track=_parse_track(data.get('current_track')),
            recent_queue=_parse_tracks(data.get('recent_queue')),
            full_playlist=_parse_tracks(data.get('full_playlist')),
            current_index=safe_int(data.get('current_index')),
        )
        options = RecommendationOptions(
            exclude_ids=_parse_strings(data.get('exclude_song_ids')),
            exclude_artists=_parse_strings(data.get('exclude_artists')),
            user_blocklist=_parse_strings(data.get('user_blocklist')),
            use_compound_boost=bool(data.get('use_compound_boost', True)),
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    listener = user_id or ANONYMOUS_USER
    cooldown = timedelta(seconds=settings.cooldown_seconds)
    if not last_queue_times.ready(listener, cooldown):
        return jsonify({'error': 'AI DJ cooldown active, try again shortly'}), 429

    service = build_dj_service(listener, settings)

    try:
        result = service.recommend(context, batch_size, user_id=user_id, options=options)
    except AIDJError as e:
        logger.warning(f"AI DJ failed for {listener}: {e}")
        status_code = 504 if e.code == AIDJError.TIMEOUT else 422
        return jsonify({'error': e.message, 'code': e.code}), status_code
    except Exception as e:
        logger.error(f"Error generating AI DJ recommendations: {e}", exc_info=True)
        return jsonify({'error': 'Failed to generate recommendations'}), 500

    last_queue_times.mark(listener, cooldown)
    return jsonify(result.to_dict()), 200


# =============================================================================
# PROFILE MAINTENANCE
# =============================================================================

@dj_bp.route('/dj/profile/recalculate', methods=['POST'])
def recalculate_profile():
    """
    Recalculate all precomputed data for a user

    Request body:
        {"user_id": "abc"}

    Returns:
        200: Summary with per-step counts and "failed_steps"
        400: Missing user_id
    """
    data = request.get_json(silent=True) or {}
    user_id = safe_strip(data.get('user_id'))
    if not user_id:
        return jsonify({'error': 'user_id is required'}), 400

    history_store = ListeningHistoryStore()
    summary = calculate_full_user_profile(
        user_id,
        profile_service=build_profile_service(_settings()),
        compound_scorer=build_compound_scorer(),
        history_store=history_store,
        affinity_store=ArtistAffinityStore(),
    )
    return jsonify(summary), 200


@dj_bp.route('/dj/fatigue/<user_id>', methods=['GET'])
def get_fatigue(user_id):
    """
    Artist fatigue summary for a listener

    Returns:
        200: {"user_id": "...", "recent_artists": [...],
              "over_recommended_artists": [...], "cooled_down_artists": [...]}
    """
    tracker = fatigue_registry.peek(user_id)
    if tracker is None:
        stats = {'recent_artists': [], 'over_recommended_artists': [], 'cooled_down_artists': []}
    else:
        stats = tracker.get_stats()
    return jsonify(dict(stats, user_id=user_id)), 200
