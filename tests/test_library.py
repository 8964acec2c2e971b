"""Tests for paging, counting and keyword search over the library."""

from __future__ import annotations

import pytest

from library import AudioLibrary, open_library
from config import Settings


@pytest.fixture
def populated(library, make_metadata):
    songs = [
        library.register_song(make_metadata(f"Track number {i}", f"Artist {i % 3}"), [i, i + 100])
        for i in range(7)
    ]
    return songs


def test_pages_cover_every_id_once_in_order(library, populated):
    seen = []
    page = 0
    while True:
        songs = library.list_songs(page, 3)
        if not songs:
            break
        seen.extend(s.id for s in songs)
        page += 1

    assert seen == sorted(s.id for s in populated)
    assert page == 3


def test_zero_page_size_is_empty(library, populated):
    assert library.list_songs(0, 0) == []


def test_negative_paging_is_rejected(library):
    with pytest.raises(ValueError):
        library.list_songs(-1, 10)
    with pytest.raises(ValueError):
        library.list_songs(0, -1)


def test_unresolvable_ids_are_skipped(store, library, populated):
    store.register(500)

    ids = [s.id for s in library.list_songs(0, 100)]

    assert 500 not in ids
    assert len(ids) == len(populated)


def test_count_and_get(library, populated):
    assert library.count_songs() == 7
    assert library.get_song(populated[2].id) == populated[2]
    assert library.get_song(12345) is None


def test_search_by_text(library, make_metadata):
    rock = library.register_song(make_metadata("505", "Arctic Monkeys", "Rock"), [1])
    indie = library.register_song(make_metadata("We Fell In October", "girl in red", "Indie"), [2])
    library.register_song(make_metadata("Like Him", "Tyler"), [3])

    assert [s.id for s in library.search_by_text("arctic")] == [rock.id]
    assert [s.id for s in library.search_by_text("OCTOBER rock")] == [rock.id, indie.id]
    assert [s.id for s in library.search_by_text("indie")] == [indie.id]
    assert library.search_by_text("   ") == []
    assert library.search_by_text("nothing") == []


def test_identify_round_trip(library, make_metadata):
    song = library.register_song(make_metadata(), [10, 20, 30, 40], hash_count=4)

    results = library.identify([10, 20, 30, 40, 10])

    assert [r.song.id for r in results] == [song.id]
    assert results[0].confidence == pytest.approx(0.8)


def test_open_memory_library():
    library = open_library(Settings(store="memory"))

    assert isinstance(library, AudioLibrary)
    assert library.count_songs() == 0
    library.close()
