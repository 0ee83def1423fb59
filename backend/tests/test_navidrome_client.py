"""
Tests for the Navidrome client: login, token reuse, paging and search.
"""

from unittest.mock import Mock

import pytest
import requests

from navidrome_client import LibraryAPIError, NavidromeClient


SONG = {'id': '1', 'title': 'Money', 'artist': 'Pink Floyd', 'album': 'The Dark Side of the Moon',
        'duration': 382}


def _response(status=200, payload=None):
    response = Mock()
    response.status_code = status
    response.ok = status < 400
    response.reason = 'OK' if status < 400 else 'Error'
    response.json.return_value = payload
    return response


@pytest.fixture
def session():
    session = Mock()
    session.post.return_value = _response(payload={'token': 'tok', 'id': 'cid'})
    return session


@pytest.fixture
def client(session):
    return NavidromeClient(base_url='http://navidrome:4533/', username='dj', password='secret',
                           session=session)


class TestAuthentication:

    def test_login_and_headers(self, client, session):
        session.get.return_value = _response(payload=[SONG])

        client.list_all_tracks()

        login_url = session.post.call_args[0][0]
        assert login_url == 'http://navidrome:4533/auth/login'
        assert session.post.call_args[1]['json'] == {'username': 'dj', 'password': 'secret'}

        headers = session.get.call_args[1]['headers']
        assert headers == {'x-nd-authorization': 'Bearer tok', 'x-nd-client-unique-id': 'cid'}

    def test_token_reused(self, client, session):
        session.get.return_value = _response(payload=[])

        client.list_all_tracks()
        client.list_artists()

        assert session.post.call_count == 1
        assert client.stats['logins'] == 1

    def test_relogin_on_401(self, client, session):
        session.get.side_effect = [_response(status=401), _response(payload=[SONG])]

        tracks = client.list_all_tracks()

        assert [t.id for t in tracks] == ['1']
        assert session.post.call_count == 2
        assert client.stats['relogins'] == 1

    def test_second_401_raises(self, client, session):
        session.get.return_value = _response(status=401)

        with pytest.raises(LibraryAPIError) as exc_info:
            client.list_all_tracks()

        assert exc_info.value.status_code == 401

    def test_missing_credentials(self, session, monkeypatch):
        for name in ('NAVIDROME_URL', 'NAVIDROME_USERNAME', 'NAVIDROME_PASSWORD'):
            monkeypatch.delenv(name, raising=False)
        client = NavidromeClient(session=session)

        with pytest.raises(LibraryAPIError):
            client.list_all_tracks()

        session.post.assert_not_called()

    def test_failed_login(self, client, session):
        session.post.return_value = _response(status=403)

        with pytest.raises(LibraryAPIError) as exc_info:
            client.get_auth_token()

        assert exc_info.value.status_code == 403

    def test_login_without_token(self, client, session):
        session.post.return_value = _response(payload={'id': 'cid'})

        with pytest.raises(LibraryAPIError):
            client.get_auth_token()


class TestRequests:

    def test_paging_params(self, client, session):
        session.get.return_value = _response(payload=[SONG])

        tracks = client.list_all_tracks(offset=10, limit=5)

        assert session.get.call_args[0][0] == 'http://navidrome:4533/api/song'
        assert session.get.call_args[1]['params'] == {'_start': 10, '_end': 14}
        assert tracks[0].title == 'Money'
        assert tracks[0].duration == 382

    def test_stream_url_filled_in(self, client, session):
        session.get.return_value = _response(payload=[SONG])

        track = client.list_all_tracks()[0]

        assert track.stream_url == '/api/navidrome/stream/1'

    def test_timeout_becomes_library_error(self, client, session):
        session.get.side_effect = requests.exceptions.Timeout()

        with pytest.raises(LibraryAPIError) as exc_info:
            client.list_artists()

        assert exc_info.value.status_code is None
        assert client.stats['errors'] == 1

    def test_server_error(self, client, session):
        session.get.return_value = _response(status=500)

        with pytest.raises(LibraryAPIError) as exc_info:
            client.list_artists()

        assert exc_info.value.status_code == 500

    def test_non_json_body_becomes_library_error(self, client, session):
        response = _response()
        response.json.side_effect = ValueError('Expecting value')
        session.get.return_value = response

        with pytest.raises(LibraryAPIError) as exc_info:
            client.list_all_tracks()

        assert exc_info.value.status_code is None
        assert client.stats['errors'] == 1

    def test_non_json_login_becomes_library_error(self, client, session):
        response = _response()
        response.json.side_effect = ValueError('Expecting value')
        session.post.return_value = response

        with pytest.raises(LibraryAPIError):
            client.get_auth_token()

    def test_albums_filtered_by_artist(self, client, session):
        session.get.return_value = _response(payload=[{'id': 'al1', 'name': 'Animals'}])

        albums = client.list_albums('a1', 0, 10)

        assert albums == [{'id': 'al1', 'name': 'Animals'}]
        assert session.get.call_args[1]['params'] == {'_start': 0, '_end': 9, 'artist_id': 'a1'}


class TestSearch:

    def test_falls_back_to_next_param(self, client, session):
        session.get.side_effect = [_response(payload=[]), _response(payload=[SONG])]

        tracks = client.search('Money')

        assert [t.id for t in tracks] == ['1']
        first, second = session.get.call_args_list
        assert first[1]['params']['title'] == 'Money'
        assert second[1]['params']['fullText'] == 'Money'

    def test_http_error_tries_next_param(self, client, session):
        session.get.side_effect = [_response(status=400), _response(payload=[SONG])]

        assert [t.id for t in client.search('Money')] == ['1']

    def test_transport_error_propagates(self, client, session):
        session.get.side_effect = requests.exceptions.ConnectionError()

        with pytest.raises(LibraryAPIError):
            client.search('Money')

        assert session.get.call_count == 1

    def test_non_json_body_propagates(self, client, session):
        response = _response()
        response.json.side_effect = ValueError('<html>Bad Gateway</html>')
        session.get.return_value = response

        with pytest.raises(LibraryAPIError):
            client.search('Money')

        assert session.get.call_count == 1

    def test_no_results(self, client, session):
        session.get.return_value = _response(payload=[])

        assert client.search('Nothing') == []
        assert session.get.call_count == 3

    def test_empty_query(self, client, session):
        assert client.search('') == []
        session.get.assert_not_called()
