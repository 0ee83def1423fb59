"""
Tests for the AI DJ orchestrator.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from ai_dj import (
    AIDJError,
    AIDJService,
    RecommendationOptions,
    STATUS_PARTIAL_SUCCESS,
    STATUS_SUCCESS,
    check_cooldown,
    tag_for_queue,
)
from artist_fatigue import ArtistFatigueTracker
from dj_context import PlaybackContext
from dj_models import RawSuggestion
from navidrome_client import LibraryAPIError, NavidromeClient
from ollama_client import LLMServiceError, LLMTimeoutError, OllamaClient
from tests.test_doubles import FakeLibraryClient, FakeLLMClient, make_track


@pytest.fixture
def fatigue(clock):
    return ArtistFatigueTracker(clock=clock)


@pytest.fixture
def context(current_track):
    return PlaybackContext(current_track=current_track)


def _service(llm, library, fatigue, rng, clock, **kwargs):
    return AIDJService(llm_client=llm, library_client=library, fatigue_tracker=fatigue,
                       rng=rng, clock=clock, **kwargs)


class TestFailures:

    def test_llm_timeout_raises_timeout(self, library_client, fatigue, rng, clock, context):
        llm = FakeLLMClient(LLMTimeoutError(10))
        service = _service(llm, library_client, fatigue, rng, clock)

        with pytest.raises(AIDJError) as exc_info:
            service.recommend(context, 5)

        assert exc_info.value.code == AIDJError.TIMEOUT
        assert len(llm.prompts) == 1

    def test_llm_service_error_raises_timeout(self, library_client, fatigue, rng, clock, context):
        service = _service(FakeLLMClient(LLMServiceError('boom', 500)), library_client, fatigue, rng, clock)

        with pytest.raises(AIDJError) as exc_info:
            service.recommend(context, 5)

        assert exc_info.value.code == AIDJError.TIMEOUT

    def test_empty_responses_exhaust_attempts(self, library_client, fatigue, rng, clock, context):
        llm = FakeLLMClient([])
        service = _service(llm, library_client, fatigue, rng, clock)

        with pytest.raises(AIDJError) as exc_info:
            service.recommend(context, 5)

        assert exc_info.value.code == AIDJError.NO_RECOMMENDATIONS
        assert len(llm.prompts) == 3

    @pytest.mark.parametrize('model_text', ['', '{"songs": ["Queen - Bohemian Rhapsody"]}'])
    def test_empty_model_answers_are_retried(self, library_client, fatigue, rng, clock, context,
                                             model_text):
        response = Mock(status_code=200, ok=True)
        response.json.return_value = {'response': model_text}
        session = Mock()
        session.post.return_value = response
        llm = OllamaClient(base_url='http://ollama:11434', session=session)
        service = _service(llm, library_client, fatigue, rng, clock)

        with pytest.raises(AIDJError) as exc_info:
            service.recommend(context, 3)

        assert exc_info.value.code == AIDJError.NO_RECOMMENDATIONS
        assert session.post.call_count == 3

    def test_retry_succeeds_after_empty_response(self, library_client, fatigue, rng, clock, context,
                                                 three_suggestions):
        llm = FakeLLMClient([], three_suggestions)
        service = _service(llm, library_client, fatigue, rng, clock)

        result = service.recommend(context, 3)

        assert len(llm.prompts) == 2
        assert [t.id for t in result.tracks] == ['t1', 't2', 't3']

    def test_empty_library_raises_no_match(self, fatigue, rng, clock, context, three_suggestions):
        service = _service(FakeLLMClient(three_suggestions), FakeLibraryClient(), fatigue, rng, clock)

        with pytest.raises(AIDJError) as exc_info:
            service.recommend(context, 5)

        assert exc_info.value.code == AIDJError.NO_LIBRARY_MATCH

    def test_library_outage_raises_no_match(self, library_client, fatigue, rng, clock, context,
                                            three_suggestions):
        library_client.error = LibraryAPIError('down', 503)
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock)

        with pytest.raises(AIDJError) as exc_info:
            service.recommend(context, 5)

        assert exc_info.value.code == AIDJError.NO_LIBRARY_MATCH

    def test_non_json_library_response_raises_no_match(self, fatigue, rng, clock, context,
                                                       three_suggestions):
        login = Mock(status_code=200, ok=True)
        login.json.return_value = {'token': 'tok', 'id': 'cid'}
        page = Mock(status_code=200, ok=True)
        page.json.side_effect = ValueError('Expecting value')
        session = Mock()
        session.post.return_value = login
        session.get.return_value = page
        library = NavidromeClient(base_url='http://navidrome:4533', username='dj', password='secret',
                                  session=session)
        service = _service(FakeLLMClient(three_suggestions), library, fatigue, rng, clock)

        with pytest.raises(AIDJError) as exc_info:
            service.recommend(context, 3)

        assert exc_info.value.code == AIDJError.NO_LIBRARY_MATCH

    @pytest.mark.parametrize('batch_size', [0, 11])
    def test_batch_size_bounds(self, library_client, fatigue, rng, clock, context, batch_size):
        service = _service(FakeLLMClient([]), library_client, fatigue, rng, clock)

        with pytest.raises(ValueError):
            service.recommend(context, batch_size)


class TestRecommend:

    def test_three_matched_two_fallback(self, library_client, fatigue, rng, clock, context,
                                        three_suggestions):
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock)

        result = service.recommend(context, 5)

        ids = [t.id for t in result.tracks]
        assert result.status == STATUS_SUCCESS
        assert result.shortfall == 0
        assert len(ids) == 5
        assert len(set(ids)) == 5
        assert ids[:3] == ['t1', 't2', 't3']

        fallback = result.tracks[3:]
        assert all(t.id.startswith('f') for t in fallback)
        assert len({t.artist for t in fallback}) == 2

        assert len({m.queued_at for m in result.queue_metadata}) == 1
        assert result.queue_metadata[0].queued_at == clock()
        assert all(m.ai_queued and m.queued_by == 'ai-dj' for m in result.queue_metadata)

    def test_matched_artists_are_fatigued(self, library_client, fatigue, rng, clock, context,
                                          three_suggestions):
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock)

        service.recommend(context, 3)

        assert fatigue.is_fatigued('Pink Floyd')
        assert fatigue.is_fatigued('Queen')
        assert fatigue.is_fatigued('Eagles')

    def test_fatigued_artist_suggestions_dropped(self, library_client, fatigue, rng, clock, context,
                                                 three_suggestions):
        fatigue.record('Queen')
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock)

        result = service.recommend(context, 5)

        assert 'Queen' not in {t.artist for t in result.tracks}

    def test_one_batch_never_repeats_a_fatigued_artist(self, library_tracks, fatigue, rng, clock, context):
        library = FakeLibraryClient(tracks=library_tracks + [make_track('t4', 'Wish You Were Here', 'Pink Floyd')])
        suggestions = [RawSuggestion('Pink Floyd - Comfortably Numb'),
                       RawSuggestion('Pink Floyd - Wish You Were Here')]
        service = _service(FakeLLMClient(suggestions), library, fatigue, rng, clock)

        result = service.recommend(context, 2)

        artists = [t.artist for t in result.tracks]
        assert result.tracks[0].id == 't1'
        assert artists.count('Pink Floyd') == 1
        assert len(result.tracks) == 2

    def test_partial_success(self, current_track, fatigue, rng, clock, context):
        library = FakeLibraryClient(tracks=[
            current_track,
            make_track('t1', 'Comfortably Numb', 'Pink Floyd'),
            make_track('f1', 'Blue Train', 'John Coltrane'),
        ])
        suggestions = [RawSuggestion('Pink Floyd - Comfortably Numb'), RawSuggestion('Unknown - Nothing Here')]
        service = _service(FakeLLMClient(suggestions), library, fatigue, rng, clock)

        result = service.recommend(context, 5)

        assert result.status == STATUS_PARTIAL_SUCCESS
        assert result.shortfall == 3
        assert sorted(t.id for t in result.tracks) == ['f1', 't1']

    def test_current_track_never_returned(self, library_client, fatigue, rng, clock, context):
        suggestions = [RawSuggestion('Pink Floyd - Money')]
        service = _service(FakeLLMClient(suggestions), library_client, fatigue, rng, clock)

        result = service.recommend(context, 5)

        assert 'c0' not in [t.id for t in result.tracks]

    def test_exclusions_respected(self, library_client, fatigue, rng, clock, context, three_suggestions):
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock)
        options = RecommendationOptions(exclude_ids=['f1'], exclude_artists=['Queen'])

        result = service.recommend(context, 5, options=options)

        ids = [t.id for t in result.tracks]
        assert 't2' not in ids
        assert 'f1' not in ids
        assert len(ids) == 5

    def test_user_blocklist(self, library_client, fatigue, rng, clock, context, three_suggestions):
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock)
        options = RecommendationOptions(user_blocklist=['eagles'])

        result = service.recommend(context, 5, options=options)

        assert 'Eagles' not in {t.artist for t in result.tracks}

    def test_ranking_degrades_on_profile_failure(self, library_client, fatigue, rng, clock, context,
                                                 three_suggestions):
        profiles = Mock()
        profiles.get_or_create.side_effect = RuntimeError('profile store down')
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock,
                           profile_service=profiles)

        result = service.recommend(context, 3, user_id='u1')

        assert [t.id for t in result.tracks] == ['t1', 't2', 't3']
        assert service.stats['ranking_degraded'] == 1

    def test_compound_boost_applied(self, library_client, fatigue, rng, clock, context, three_suggestions):
        scorer = Mock()
        scorer.apply_boost.side_effect = lambda user_id, tracks: list(reversed(tracks))
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock,
                           compound_scorer=scorer)

        result = service.recommend(context, 3, user_id='u1')

        assert [t.id for t in result.tracks] == ['t3', 't2', 't1']

    def test_compound_boost_can_be_disabled(self, library_client, fatigue, rng, clock, context,
                                            three_suggestions):
        scorer = Mock()
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock,
                           compound_scorer=scorer)

        service.recommend(context, 3, user_id='u1', options=RecommendationOptions(use_compound_boost=False))

        scorer.apply_boost.assert_not_called()

    def test_llm_told_about_excluded_artists(self, library_client, fatigue, rng, clock, context,
                                             three_suggestions):
        llm = FakeLLMClient(three_suggestions)
        service = _service(llm, library_client, fatigue, rng, clock, timeout=7)

        service.recommend(context, 3, options=RecommendationOptions(exclude_artists=['ABBA']))

        assert llm.calls[0]['exclude_artists'] == ['ABBA']
        assert llm.calls[0]['timeout'] == 7
        assert 'CRITICAL' in llm.prompts[0]

    def test_result_to_dict(self, library_client, fatigue, rng, clock, context, three_suggestions):
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock)

        payload = service.recommend(context, 3).to_dict()

        assert payload['status'] == STATUS_SUCCESS
        assert payload['tracks'][0]['id'] == 't1'
        assert payload['tracks'][0]['queue_metadata'] == {
            'ai_queued': True,
            'queued_at': clock().isoformat(),
            'queued_by': 'ai-dj',
        }

    def test_contextual_recommendations_returns_list(self, library_client, fatigue, rng, clock, context,
                                                     three_suggestions):
        service = _service(FakeLLMClient(three_suggestions), library_client, fatigue, rng, clock)

        tracks = service.get_contextual_recommendations(context, 2, exclude_artists=['Eagles'])

        assert [t.id for t in tracks] == ['t1', 't2']


class TestQueueHelpers:

    def test_tag_for_queue_shares_timestamp(self, clock):
        tracks = [make_track('1', 'a', 'A'), make_track('2', 'b', 'B')]

        metadata = tag_for_queue(tracks, now=clock())

        assert [m.queued_at for m in metadata] == [clock(), clock()]

    def test_check_cooldown(self, clock):
        assert check_cooldown(None)
        assert not check_cooldown(clock() - timedelta(seconds=10), now=clock())
        assert check_cooldown(clock() - timedelta(seconds=30), now=clock())
