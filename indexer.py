import logging
from concurrent.futures import ThreadPoolExecutor

from config import MIN_TITLE_TOKEN_LENGTH
from models import Song, SongMetadata, coerce_hashes

logger = logging.getLogger(__name__)


def text_tokens(title, artist, genre=None):
    """
    Splits song metadata into (field, word) pairs for the keyword index.
    Title words shorter than MIN_TITLE_TOKEN_LENGTH are skipped.
    """
    tokens = set()
    for word in title.lower().split():
        if len(word) >= MIN_TITLE_TOKEN_LENGTH:
            tokens.add(("title", word))
    for word in artist.lower().split():
        tokens.add(("artist", word))
    if genre:
        for word in genre.lower().split():
            tokens.add(("genre", word))
    return sorted(tokens)


def _batches(items, size):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class Indexer:
    """
    Writes a song into the catalog and its hashes into the posting index.

    There is no transaction around the steps below. A failure after the id
    is allocated leaves a gap in the id sequence, and a failure between the
    catalog write and the posting writes leaves a song that undercounts in
    later matches without affecting any other song.
    """

    def __init__(self, catalog, postings, text_index=None, max_workers=8, posting_batch_size=1000):
        self.catalog = catalog
        self.postings = postings
        self.text_index = text_index
        self.max_workers = max_workers
        self.posting_batch_size = posting_batch_size

    def index_song(self, metadata, fingerprint_hashes, hash_count=None) -> Song:
        # Validate before allocating so bad input never burns an id
        hashes = coerce_hashes(fingerprint_hashes)
        if isinstance(metadata, dict):
            metadata = SongMetadata(**metadata)
        if hash_count is None:
            hash_count = len(hashes)

        # 1. Allocate id
        song_id = self.catalog.allocate_id()

        # 2. Store the song record
        song = Song.from_metadata(song_id, metadata, hash_count)
        self.catalog.put(song)

        # 3. Postings, one per distinct hash value
        distinct = list(dict.fromkeys(hashes))
        self._append_postings(distinct, song_id)

        # 4. Make it visible to paging
        self.catalog.register(song_id)

        if self.text_index is not None:
            self.text_index.add_tokens(song_id, text_tokens(song.title, song.artist, song.genre))

        logger.info(
            "Stored song '%s' by '%s' with ID %d (%d hashes, %d distinct)",
            song.title, song.artist, song_id, len(hashes), len(distinct),
        )
        return song

    def _append_postings(self, distinct_hashes, song_id):
        batches = list(_batches(distinct_hashes, self.posting_batch_size))
        if len(batches) <= 1 or self.max_workers <= 1:
            for batch in batches:
                self.postings.append_many(batch, song_id)
            return

        # Batches write disjoint keys, so order between them does not matter
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batches))) as executor:
            futures = [executor.submit(self.postings.append_many, batch, song_id) for batch in batches]
            for future in futures:
                future.result()
        logger.debug("Appended %d postings for song %d in %d batches", len(distinct_hashes), song_id, len(batches))
