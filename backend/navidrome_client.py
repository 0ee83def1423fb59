"""
Navidrome API Client

Handles low-level music library API concerns:
- Token login against /auth/login with reuse until shortly before expiry
- One re-login when a request comes back 401
- Paged song/artist/album listing and song search

All transport failures surface as LibraryAPIError.
"""

import os
import time
import logging
from typing import List, Optional

import requests

from dj_models import Track

logger = logging.getLogger(__name__)

LOGIN_TIMEOUT = 5
REQUEST_TIMEOUT = 15
TOKEN_LIFETIME = 3600
TOKEN_REFRESH_MARGIN = 300

# Navidrome versions differ in which filter the song endpoint honours
SEARCH_PARAMS = ['title', 'fullText', 'name']


class LibraryAPIError(Exception):
    """Raised when the library API cannot be reached or returns an error"""
    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class NavidromeClient:
    """
    Navidrome native API client with token authentication.
    """

    def __init__(self, base_url: str = None, username: str = None, password: str = None,
                 timeout: float = REQUEST_TIMEOUT, session: requests.Session = None, logger=None):
        """
        Initialize Navidrome Client

        Args:
            base_url: Server URL (default: NAVIDROME_URL env var)
            username: Login user (default: NAVIDROME_USERNAME env var)
            password: Login password (default: NAVIDROME_PASSWORD env var)
            timeout: Per-request timeout in seconds
            session: Optional requests session (for connection reuse/testing)
            logger: Optional logger instance (uses module logger if not provided)
        """
        self.base_url = (base_url or os.environ.get('NAVIDROME_URL', '')).rstrip('/')
        self.username = username or os.environ.get('NAVIDROME_USERNAME')
        self.password = password or os.environ.get('NAVIDROME_PASSWORD')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

        self.token = None
        self.client_id = None
        self.token_expires = 0

        self.stats = {
            'api_calls': 0,
            'logins': 0,
            'relogins': 0,
            'errors': 0,
        }

    # ========================================================================
    # AUTHENTICATION
    # ========================================================================

    def _reset_auth(self):
        self.token = None
        self.client_id = None
        self.token_expires = 0

    def get_auth_token(self) -> str:
        """
        Get a valid session token (reuses the existing one if still valid)

        Raises:
            LibraryAPIError: If credentials are missing or login fails
        """
        if self.token and time.time() < self.token_expires - TOKEN_REFRESH_MARGIN:
            return self.token

        if not self.base_url or not self.username or not self.password:
            raise LibraryAPIError("Navidrome credentials incomplete "
                                  "(set NAVIDROME_URL, NAVIDROME_USERNAME, NAVIDROME_PASSWORD)")

        try:
            response = self.session.post(
                f"{self.base_url}/auth/login",
                json={'username': self.username, 'password': self.password},
                timeout=LOGIN_TIMEOUT
            )
        except requests.exceptions.Timeout as e:
            raise LibraryAPIError(f"Login request timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise LibraryAPIError(f"Authentication error: {e}") from e

        if not response.ok:
            raise LibraryAPIError(f"Login failed: {response.status_code} {response.reason}",
                                  status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise LibraryAPIError(f"Login returned invalid JSON: {e}") from e

        if not isinstance(data, dict) or not data.get('token') or not data.get('id'):
            raise LibraryAPIError("No token or id received from login")

        self.token = data['token']
        self.client_id = data['id']
        self.token_expires = time.time() + TOKEN_LIFETIME
        self.stats['logins'] += 1

        self.logger.debug("Navidrome authentication successful")
        return self.token

    # ========================================================================
    # REQUESTS
    # ========================================================================

    def _api_get(self, endpoint: str, params: dict = None):
        """
        GET a native API endpoint, logging in again once on 401.

        Returns:
            Decoded JSON body
        """
        for attempt in range(2):
            token = self.get_auth_token()
            try:
                response = self.session.get(
                    f"{self.base_url}{endpoint}",
                    params=params,
                    headers={
                        'x-nd-authorization': f'Bearer {token}',
                        'x-nd-client-unique-id': self.client_id,
                    },
                    timeout=self.timeout
                )
            except requests.exceptions.Timeout as e:
                self.stats['errors'] += 1
                raise LibraryAPIError(f"API request timed out ({self.timeout}s limit): {endpoint}") from e
            except requests.exceptions.RequestException as e:
                self.stats['errors'] += 1
                raise LibraryAPIError(f"API request failed: {e}") from e

            self.stats['api_calls'] += 1

            if response.status_code == 401 and attempt == 0:
                self.logger.warning("Navidrome token rejected, logging in again")
                self.stats['relogins'] += 1
                self._reset_auth()
                continue

            if not response.ok:
                self.stats['errors'] += 1
                raise LibraryAPIError(f"API request failed: {response.status_code} {response.reason}",
                                      status_code=response.status_code)

            try:
                return response.json()
            except ValueError as e:
                self.stats['errors'] += 1
                raise LibraryAPIError(f"API returned invalid JSON: {endpoint}") from e

        raise LibraryAPIError("Authentication rejected after re-login", status_code=401)

    @staticmethod
    def _page(offset: int, limit: int) -> dict:
        return {'_start': offset, '_end': offset + limit - 1}

    def _to_track(self, song: dict) -> Track:
        track = Track.from_dict(song)
        if not track.stream_url and track.id:
            track = Track(
                id=track.id,
                title=track.title or 'Unknown Title',
                artist=track.artist,
                album=track.album,
                duration=track.duration,
                stream_url=f"/api/navidrome/stream/{track.id}",
            )
        return track

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def list_all_tracks(self, offset: int = 0, limit: int = 50) -> List[Track]:
        """Page through every song in the library"""
        data = self._api_get('/api/song', params=self._page(offset, limit))
        return [self._to_track(song) for song in data or []]

    def search(self, query: str, offset: int = 0, limit: int = 50) -> List[Track]:
        """
        Search songs, trying each filter parameter until one returns results.
        """
        if not query:
            return []

        for param in SEARCH_PARAMS:
            params = {param: query}
            params.update(self._page(offset, limit))
            try:
                data = self._api_get('/api/song', params=params)
            except LibraryAPIError as e:
                if e.status_code is None:
                    raise
                self.logger.debug(f"Search with '{param}' failed: {e}")
                continue

            if data:
                self.logger.debug(f"Search with '{param}' returned {len(data)} results")
                return [self._to_track(song) for song in data]

        self.logger.debug(f"No results for '{query}' from any search parameter")
        return []

    def list_artists(self, offset: int = 0, limit: int = 100) -> List[dict]:
        """Artists as dicts with at least 'id', 'name' and 'genres'"""
        return self._api_get('/api/artist', params=self._page(offset, limit)) or []

    def list_albums(self, artist_id: Optional[str], offset: int = 0, limit: int = 50) -> List[dict]:
        params = self._page(offset, limit)
        if artist_id:
            params['artist_id'] = artist_id
        return self._api_get('/api/album', params=params) or []
