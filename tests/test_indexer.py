"""Tests for song indexing: id allocation, postings and keyword tokens."""

from __future__ import annotations

import threading

import pytest

from errors import MalformedQuery, StoreUnavailable
from indexer import Indexer, text_tokens


class FailingPostings:
    def append_many(self, hashes, song_id):
        raise StoreUnavailable("posting store went away")


def test_index_song_writes_catalog_postings_and_registry(store, indexer, make_metadata):
    song = indexer.index_song(make_metadata("Do I Wanna Know", "Arctic Monkeys", "Indie Rock"), [5, 6, 7])

    assert store.get(song.id) == song
    assert song.hash_count == 3
    assert song.upload_timestamp.tzinfo is not None
    assert store.list_ids(0, 10) == [song.id]
    for h in (5, 6, 7):
        assert store.postings_for(h) == {song.id}


def test_duplicate_hashes_collapse_to_one_posting(store, indexer, make_metadata):
    song = indexer.index_song(make_metadata(), [42, 42, 42, 43])

    assert store.postings_for(42) == {song.id}
    # hash_count reflects what was indexed, duplicates included
    assert song.hash_count == 4


def test_explicit_hash_count_is_kept(indexer, make_metadata):
    song = indexer.index_song(make_metadata(), [1, 2], hash_count=17)

    assert song.hash_count == 17


def test_metadata_may_be_a_dict(indexer):
    song = indexer.index_song({"title": "505", "artist": "Arctic Monkeys"}, [1])

    assert song.title == "505"
    assert song.genre is None


def test_ids_strictly_increase(indexer, make_metadata):
    ids = [indexer.index_song(make_metadata(f"Song {i}"), [i]).id for i in range(5)]

    assert ids == sorted(ids)
    assert len(set(ids)) == 5


def test_concurrent_allocation_never_repeats(store):
    allocated = []
    lock = threading.Lock()

    def worker():
        mine = [store.allocate_id() for _ in range(50)]
        with lock:
            allocated.extend(mine)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(allocated) == 400
    assert len(set(allocated)) == 400


def test_failed_index_leaves_an_id_gap(store, make_metadata):
    broken = Indexer(store, FailingPostings())
    with pytest.raises(StoreUnavailable):
        broken.index_song(make_metadata("Lost"), [1, 2])

    song = Indexer(store, store).index_song(make_metadata("Kept"), [3, 4])

    # The failed song keeps its id and its record, but never reached the registry.
    # Ids are opaque keys, not a dense count.
    assert song.id == 2
    assert store.get(1).title == "Lost"
    assert store.list_ids(0, 10) == [2]
    assert store.count() == 1


def test_malformed_hashes_do_not_burn_an_id(store, indexer, make_metadata):
    with pytest.raises(MalformedQuery):
        indexer.index_song(make_metadata(), [1, "abc"])

    assert indexer.index_song(make_metadata(), [1]).id == 1


def test_postings_fan_out_in_batches(store, make_metadata):
    batched = Indexer(store, store, max_workers=4, posting_batch_size=7)
    hashes = list(range(100))

    song = batched.index_song(make_metadata(), hashes + hashes[:10])

    assert store.postings_for_many(hashes) == {h: {song.id} for h in hashes}


def test_text_tokens():
    tokens = text_tokens("We Fell In October", "girl in red", "Indie Pop")

    assert ("title", "october") in tokens
    assert ("title", "fell") in tokens
    # Short title words are not indexed
    assert ("title", "we") not in tokens
    assert ("title", "in") not in tokens
    assert ("artist", "in") in tokens
    assert ("artist", "girl") in tokens
    assert ("genre", "pop") in tokens


def test_text_tokens_without_genre():
    assert not [t for t in text_tokens("Hello World", "Adele") if t[0] == "genre"]


def test_concurrent_index_song_keeps_registry_and_postings(store, make_metadata):
    concurrent_indexer = Indexer(store, store, max_workers=4, posting_batch_size=5)
    songs = []
    errors = []
    lock = threading.Lock()

    def worker(n):
        try:
            for i in range(10):
                base = (n * 10 + i) * 1000
                song = concurrent_indexer.index_song(make_metadata(f"Song {n}-{i}"), list(range(base, base + 23)))
                with lock:
                    songs.append((song, base))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    ids = [song.id for song, _ in songs]
    assert len(set(ids)) == 80
    assert store.list_ids(0, 100) == sorted(ids)
    assert store.count() == 80
    for song, base in songs:
        expected = {h: {song.id} for h in range(base, base + 23)}
        assert store.postings_for_many(range(base, base + 23)) == expected
