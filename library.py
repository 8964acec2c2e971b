import logging

from config import load_settings
from database import MemoryStore, PostgresStore
from indexer import Indexer
from matcher import MatchingEngine

logger = logging.getLogger(__name__)


class AudioLibrary:
    """
    The song catalog as the server and CLI see it: register songs,
    identify clips, page through and keyword-search the catalog.
    """

    def __init__(self, store, max_workers=8, lookup_batch_size=500, posting_batch_size=1000):
        # One backend object serves as catalog, posting index and text index
        self.store = store
        self.indexer = Indexer(
            store, store, text_index=store,
            max_workers=max_workers, posting_batch_size=posting_batch_size,
        )
        self.engine = MatchingEngine(
            store, store,
            max_workers=max_workers, lookup_batch_size=lookup_batch_size,
        )

    def register_song(self, metadata, hashes, hash_count=None):
        return self.indexer.index_song(metadata, hashes, hash_count)

    def identify(self, query_hashes):
        return self.engine.match(query_hashes)

    def list_songs(self, page, page_size):
        """One page of songs in ascending id order; ids without a record are skipped."""
        if page < 0 or page_size < 0:
            raise ValueError(f"page and page_size must be non-negative, got page={page} page_size={page_size}")
        if page_size == 0:
            return []

        start = page * page_size
        songs = []
        for song_id in self.store.list_ids(start, page_size):
            song = self.store.get(song_id)
            if song is not None:
                songs.append(song)
        return songs

    def count_songs(self):
        return self.store.count()

    def get_song(self, song_id):
        return self.store.get(song_id)

    def search_by_text(self, query):
        words = query.lower().split()
        if not words:
            return []
        songs = []
        for song_id in sorted(self.store.search_tokens(words)):
            song = self.store.get(song_id)
            if song is not None:
                songs.append(song)
        return songs

    def close(self):
        self.store.close()


def open_library(settings=None):
    """Builds the library on the backend named by the settings, creating tables as needed."""
    settings = settings or load_settings()

    if settings.store == "memory":
        store = MemoryStore()
    else:
        store = PostgresStore(settings.database_url, settings.pool_min, settings.pool_max)
        try:
            store.create_tables()
        except Exception:
            store.close()
            raise

    logger.info("Opened %s song library", settings.store)
    return AudioLibrary(
        store,
        max_workers=settings.max_workers,
        lookup_batch_size=settings.lookup_batch_size,
        posting_batch_size=settings.posting_batch_size,
    )
