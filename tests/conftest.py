"""Shared pytest fixtures for the index and matching tests."""

from __future__ import annotations

import pytest

from database import MemoryStore
from indexer import Indexer
from library import AudioLibrary
from matcher import MatchingEngine
from models import SongMetadata


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def indexer(store: MemoryStore) -> Indexer:
    return Indexer(store, store, text_index=store)


@pytest.fixture
def engine(store: MemoryStore) -> MatchingEngine:
    return MatchingEngine(store, store)


@pytest.fixture
def library(store: MemoryStore) -> AudioLibrary:
    return AudioLibrary(store)


@pytest.fixture
def make_metadata():
    """Build SongMetadata with sensible defaults."""

    def _make(title: str = "Song A", artist: str = "Artist", genre: str | None = None) -> SongMetadata:
        return SongMetadata(title=title, artist=artist, genre=genre, duration=180.0, sample_rate=22050)

    return _make
