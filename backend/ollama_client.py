"""
Ollama API Client

Requests song suggestions from a local Ollama server and turns the model's
free-form answer into RawSuggestion records.

Models do not reliably return clean JSON, so parsing is forgiving:
- markdown code fences are stripped
- truncated JSON gets its missing brackets/braces appended
- when JSON parsing still fails, "song": "..." pairs or numbered
  "Artist - Title" lines are pulled out with regexes (at most 5)
"""

import os
import re
import json
import time
import logging
from typing import List, Optional, Sequence

import requests

from dj_models import RawSuggestion

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = 'http://localhost:11434'
DEFAULT_MODEL = 'llama2'
DEFAULT_TIMEOUT = 20
MODEL_CHECK_TIMEOUT = 5
MAX_FALLBACK_SUGGESTIONS = 5
FALLBACK_EXPLANATION = 'Recommended based on your preferences'

SONG_FIELD_PATTERN = re.compile(r'"song"\s*:\s*"([^"]+)"', re.IGNORECASE)
TEXT_PATTERNS = [
    re.compile(r'Artist[\s-]*:?\s*([^-\n]+?)\s*[-–]\s*(?:Title|Song)[\s-]*:?\s*([^\n(]+)', re.IGNORECASE),
    re.compile(r'\d+\.\s*(?:Artist[\s-]*)?(?:Title[\s-]*)?:?\s*([^-\n]+?)\s*[-–]\s*([^\n(]+)', re.IGNORECASE),
]


class LLMServiceError(Exception):
    """Raised when the language model service fails or returns garbage"""
    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class LLMTimeoutError(LLMServiceError):
    """Raised when the language model does not answer within the timeout"""
    def __init__(self, timeout: float = None):
        self.timeout = timeout
        super().__init__(f"Language model request timed out after {timeout}s" if timeout
                         else "Language model request timed out")


# ============================================================================
# RESPONSE PARSING
# ============================================================================

def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith('```'):
        cleaned = re.sub(r'^```(?:json)?\s*', '', cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(r'\s*```\s*$', '', cleaned)
    return cleaned


def repair_truncated_json(text: str) -> str:
    """Close a recommendations payload cut off mid-stream"""
    if '"recommendations"' not in text or text.rstrip().endswith('}'):
        return text

    if text.count('[') > text.count(']'):
        text += ']'
    if text.count('{') > text.count('}'):
        text += '}'
    return text


def _extract_fallback(text: str) -> List[RawSuggestion]:
    songs = SONG_FIELD_PATTERN.findall(text)
    if songs:
        return [RawSuggestion(song=s, explanation=FALLBACK_EXPLANATION)
                for s in songs[:MAX_FALLBACK_SUGGESTIONS]]

    for pattern in TEXT_PATTERNS:
        found = pattern.findall(text)
        if found:
            suggestions = []
            for artist, title in found[:MAX_FALLBACK_SUGGESTIONS]:
                title = title.strip().split('(')[0].strip()
                suggestions.append(RawSuggestion(song=f"{artist.strip()} - {title}",
                                                 explanation=FALLBACK_EXPLANATION))
            return suggestions

    return []


def parse_recommendations_response(response_text: str) -> List[RawSuggestion]:
    """
    Parse the model's answer into suggestions.

    Returns:
        Suggestions (empty when nothing could be recovered, including valid
        JSON without a recommendations list)
    """
    cleaned = repair_truncated_json(strip_code_fences(response_text or ''))

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning(f"✗ JSON parse error ({e}), falling back to pattern extraction")
        suggestions = _extract_fallback(cleaned)
        if not suggestions:
            logger.error("✗ No songs could be parsed from response")
        return suggestions

    recommendations = parsed.get('recommendations') if isinstance(parsed, dict) else None
    if not isinstance(recommendations, list):
        logger.error("✗ Response JSON has no recommendations list")
        return []

    return [
        RawSuggestion(song=str(r.get('song', '')).strip(), explanation=r.get('explanation') or '')
        for r in recommendations
        if isinstance(r, dict) and r.get('song')
    ]


# ============================================================================
# CLIENT
# ============================================================================

class OllamaClient:
    """
    Ollama /api/generate client.
    """

    def __init__(self, base_url: str = None, model: str = None, timeout: float = DEFAULT_TIMEOUT,
                 library_client=None, max_retries: int = 3, retry_delay: float = 2.0,
                 session: requests.Session = None, logger=None):
        """
        Initialize Ollama Client

        Args:
            base_url: Server URL (default: OLLAMA_URL env var, then localhost)
            model: Model name (default: OLLAMA_MODEL env var, then llama2)
            timeout: Default request timeout in seconds
            library_client: Optional library client used to ground prompts in
                the user's library (artists with genres, example songs)
            max_retries: Attempts for connection failures (timeouts are not retried)
            retry_delay: Base delay for exponential backoff between attempts
            session: Optional requests session
            logger: Optional logger instance (uses module logger if not provided)
        """
        self.base_url = (base_url or os.environ.get('OLLAMA_URL') or DEFAULT_BASE_URL).rstrip('/')
        self.model = model or os.environ.get('OLLAMA_MODEL') or DEFAULT_MODEL
        self.timeout = timeout
        self.library_client = library_client
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

        self.stats = {
            'api_calls': 0,
            'retries': 0,
            'timeouts': 0,
            'errors': 0,
        }

    def _library_summary(self) -> Optional[str]:
        if self.library_client is None:
            return None
        try:
            artists = self.library_client.list_artists(0, 20)
            tracks = self.library_client.list_all_tracks(0, 10)
        except Exception as e:
            self.logger.warning(f"Failed to fetch library summary for prompt: {e}")
            return None

        artist_list = ', '.join(
            f"{a.get('name')} ({a.get('genres') or 'Unknown'})" for a in artists if a.get('name')
        )
        song_list = ', '.join(t.title for t in tracks)
        return (f"Use only songs from my library: artists [{artist_list}], "
                f"example songs [{song_list}]. Suggest exact matches like \"Artist - Title\".")

    def build_request_prompt(self, prompt: str, user_id: str = None,
                             exclude_artists: Sequence[str] = None) -> str:
        enhanced = prompt
        if user_id:
            summary = self._library_summary()
            if summary:
                enhanced = f"{prompt}. {summary}"
        if exclude_artists:
            enhanced += f". Never suggest songs by: {', '.join(exclude_artists)}"

        return ("Respond ONLY with valid JSON. No other text, explanations, or conversation. "
                f"Generate 5 music recommendations based on: {enhanced}. "
                'JSON: {"recommendations": [{"song": "Artist - Title", '
                '"explanation": "brief reason why recommended"}, ...]}')

    def _post_generate(self, body: dict, timeout: float) -> requests.Response:
        url = f"{self.base_url}/api/generate"

        for attempt in range(1, self.max_retries + 1):
            try:
                self.stats['api_calls'] += 1
                return self.session.post(url, json=body, timeout=timeout)
            except requests.exceptions.Timeout as e:
                self.stats['timeouts'] += 1
                raise LLMTimeoutError(timeout) from e
            except requests.exceptions.ConnectionError as e:
                if attempt == self.max_retries:
                    self.stats['errors'] += 1
                    raise LLMServiceError(f"Could not reach Ollama at {self.base_url}: {e}") from e
                wait_time = self.retry_delay * (2 ** (attempt - 1))
                self.stats['retries'] += 1
                self.logger.warning(f"Ollama connection failed (attempt {attempt}/{self.max_retries}), "
                                    f"retrying in {wait_time:.1f}s")
                time.sleep(wait_time)
            except requests.exceptions.RequestException as e:
                self.stats['errors'] += 1
                raise LLMServiceError(f"Ollama request failed: {e}") from e

        raise LLMServiceError("Ollama request failed after all retries")

    def generate(self, prompt: str, user_id: str = None, exclude_artists: Sequence[str] = None,
                 timeout: float = None) -> List[RawSuggestion]:
        """
        Ask the model for song suggestions.

        Args:
            prompt: Context prompt (see dj_context.build_prompt)
            user_id: When set, the prompt is grounded in the user's library
            exclude_artists: Artists the model is told to avoid
            timeout: Request timeout in seconds (default: client timeout)

        Returns:
            Parsed suggestions (may be empty)

        Raises:
            LLMTimeoutError: If the model does not answer in time
            LLMServiceError: On transport or HTTP errors, or a non-JSON body
        """
        timeout = timeout or self.timeout
        body = {
            'model': self.model,
            'prompt': self.build_request_prompt(prompt, user_id, exclude_artists),
            'stream': False,
        }

        response = self._post_generate(body, timeout)
        if not response.ok:
            self.stats['errors'] += 1
            raise LLMServiceError(f"Ollama API error: {response.status_code} {response.reason}",
                                  status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise LLMServiceError(f"Ollama returned invalid JSON: {e}") from e

        text = data.get('response') if isinstance(data, dict) else None
        if not text:
            self.logger.warning("✗ Ollama returned an empty response")
            return []

        suggestions = parse_recommendations_response(text)
        self.logger.info(f"✓ Ollama returned {len(suggestions)} suggestions")
        return suggestions

    def check_model_availability(self, model: str = None) -> bool:
        """True if the model is installed on the server"""
        model = model or self.model
        try:
            response = self.session.get(f"{self.base_url}/api/tags", timeout=MODEL_CHECK_TIMEOUT)
            response.raise_for_status()
            models = response.json().get('models', [])
        except requests.exceptions.RequestException as e:
            self.logger.warning(f"Model availability check failed: {e}")
            return False
        return any(m.get('name') == model for m in models)
