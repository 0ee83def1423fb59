"""
Shared fixtures for the AI DJ tests.
"""

import random

import pytest

from dj_models import RawSuggestion
from tests.test_doubles import FakeClock, FakeLibraryClient, make_track


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def current_track():
    return make_track('c0', 'Money', 'Pink Floyd', 'The Dark Side of the Moon')


@pytest.fixture
def library_tracks(current_track):
    """Current track, three tracks the model will name, four unrelated ones"""
    return [
        current_track,
        make_track('t1', 'Comfortably Numb', 'Pink Floyd', 'The Wall'),
        make_track('t2', 'Bohemian Rhapsody', 'Queen', 'A Night at the Opera'),
        make_track('t3', 'Hotel California', 'Eagles', 'Hotel California'),
        make_track('f1', 'Blue Train', 'John Coltrane'),
        make_track('f2', 'So What', 'Miles Davis'),
        make_track('f3', 'Take Five', 'Dave Brubeck'),
        make_track('f4', 'Harvest Moon', 'Neil Young'),
    ]


@pytest.fixture
def library_client(library_tracks):
    return FakeLibraryClient(tracks=library_tracks)


@pytest.fixture
def three_suggestions():
    return [
        RawSuggestion('Pink Floyd - Comfortably Numb', 'Same band, same era'),
        RawSuggestion('Queen - Bohemian Rhapsody', 'Epic seventies rock'),
        RawSuggestion('Eagles - Hotel California', 'Long guitar outro'),
    ]
