import bisect
import logging
import threading
from contextlib import contextmanager
from typing import Iterable, Optional, Protocol, runtime_checkable

import psycopg2
from psycopg2 import pool
from psycopg2.extras import execute_values

from config import LOCAL_DB, TEXT_FIELDS
from errors import StoreUnavailable
from models import Song

logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError, pool.PoolError)


@runtime_checkable
class CatalogStore(Protocol):
    """Song records keyed by id, plus the ordered registry used for paging."""

    def allocate_id(self) -> int: ...

    def put(self, song: Song) -> None: ...

    def get(self, song_id: int) -> Optional[Song]: ...

    def register(self, song_id: int) -> None: ...

    def list_ids(self, offset: int, limit: int) -> list[int]: ...

    def count(self) -> int: ...


@runtime_checkable
class PostingIndex(Protocol):
    """Inverted index: hash value -> set of song ids containing it."""

    def append(self, hash_value: int, song_id: int) -> None: ...

    def append_many(self, hashes: Iterable[int], song_id: int) -> None: ...

    def postings_for(self, hash_value: int) -> set[int]: ...

    def postings_for_many(self, hashes: Iterable[int]) -> dict[int, set[int]]: ...


@runtime_checkable
class TextIndex(Protocol):
    def add_tokens(self, song_id: int, tokens: Iterable[tuple[str, str]]) -> None: ...

    def search_tokens(self, words: Iterable[str]) -> set[int]: ...


def _check_page(offset, limit):
    if offset < 0 or limit < 0:
        raise ValueError(f"offset and limit must be non-negative, got offset={offset} limit={limit}")


class MemoryStore:
    """
    In-process backend holding the catalog, postings and text tokens.
    One lock guards everything; every mutation touches a single key.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last_id = 0
        self._songs: dict[int, Song] = {}
        self._registry: list[int] = []
        self._postings: dict[int, set[int]] = {}
        self._tokens: dict[tuple[str, str], set[int]] = {}

    # --- catalog ---

    def allocate_id(self):
        with self._lock:
            self._last_id += 1
            return self._last_id

    def put(self, song):
        with self._lock:
            self._songs[song.id] = song

    def get(self, song_id):
        with self._lock:
            return self._songs.get(song_id)

    def register(self, song_id):
        with self._lock:
            # Indexers can finish out of order, the registry stays sorted by id
            i = bisect.bisect_left(self._registry, song_id)
            if i == len(self._registry) or self._registry[i] != song_id:
                self._registry.insert(i, song_id)

    def list_ids(self, offset, limit):
        _check_page(offset, limit)
        with self._lock:
            return self._registry[offset:offset + limit]

    def count(self):
        with self._lock:
            return len(self._registry)

    # --- postings ---

    def append(self, hash_value, song_id):
        with self._lock:
            self._postings.setdefault(hash_value, set()).add(song_id)

    def append_many(self, hashes, song_id):
        with self._lock:
            for h in hashes:
                self._postings.setdefault(h, set()).add(song_id)

    def postings_for(self, hash_value):
        with self._lock:
            return set(self._postings.get(hash_value, ()))

    def postings_for_many(self, hashes):
        with self._lock:
            return {h: set(self._postings[h]) for h in hashes if h in self._postings}

    # --- text tokens ---

    def add_tokens(self, song_id, tokens):
        with self._lock:
            for field, token in tokens:
                self._tokens.setdefault((field, token), set()).add(song_id)

    def search_tokens(self, words):
        words = set(words)
        with self._lock:
            found = set()
            for word in words:
                for field in TEXT_FIELDS:
                    found |= self._tokens.get((field, word), set())
            return found

    def close(self):
        pass


class PostgresStore:
    """
    Postgres backend.

    Layout:
        songs          one row per song record
        song_registry  ordered ids for paging
        postings       (hash, song_id) primary key, so a pair is stored once
        text_tokens    (field, token, song_id) keyword index
        song_id_seq    id allocation, atomic across server instances
    """

    def __init__(self, dsn=None, minconn=1, maxconn=8):
        # No DSN means the local database
        try:
            if dsn:
                self.pool = pool.ThreadedConnectionPool(minconn, maxconn, dsn)
            else:
                self.pool = pool.ThreadedConnectionPool(minconn, maxconn, **LOCAL_DB)
        except _CONNECTION_ERRORS as e:
            raise StoreUnavailable(f"could not connect to Postgres: {e}") from e
        # ThreadedConnectionPool raises instead of waiting when every connection is out
        self._slots = threading.BoundedSemaphore(maxconn)

    @contextmanager
    def _cursor(self):
        with self._slots:
            try:
                conn = self.pool.getconn()
            except _CONNECTION_ERRORS as e:
                raise StoreUnavailable(f"no database connection available: {e}") from e

            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except _CONNECTION_ERRORS as e:
                if not conn.closed:
                    conn.rollback()
                raise StoreUnavailable(f"database connection failed: {e}") from e
            except Exception:
                if not conn.closed:
                    conn.rollback()
                raise
            finally:
                self.pool.putconn(conn, close=bool(conn.closed))

    def create_tables(self):
        """Creates the necessary database tables if they are missing."""
        commands = [
            "CREATE SEQUENCE IF NOT EXISTS song_id_seq",
            """
            CREATE TABLE IF NOT EXISTS songs (
                song_id BIGINT PRIMARY KEY,
                title VARCHAR(255) NOT NULL,
                artist VARCHAR(255) NOT NULL,
                genre VARCHAR(255),
                duration DOUBLE PRECISION NOT NULL,
                sample_rate INTEGER NOT NULL,
                hash_count INTEGER NOT NULL,
                upload_timestamp TIMESTAMPTZ NOT NULL
            )
            """,
            "CREATE TABLE IF NOT EXISTS song_registry (song_id BIGINT PRIMARY KEY)",
            """
            CREATE TABLE IF NOT EXISTS postings (
                hash BIGINT NOT NULL,
                song_id BIGINT NOT NULL,
                PRIMARY KEY (hash, song_id)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS text_tokens (
                field VARCHAR(16) NOT NULL,
                token VARCHAR(255) NOT NULL,
                song_id BIGINT NOT NULL,
                PRIMARY KEY (field, token, song_id)
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_text_tokens_token ON text_tokens(token)",
        ]
        with self._cursor() as cur:
            for command in commands:
                cur.execute(command)
        logger.debug("Database tables checked/created")

    # --- catalog ---

    def allocate_id(self):
        with self._cursor() as cur:
            cur.execute("SELECT nextval('song_id_seq')")
            return cur.fetchone()[0]

    def put(self, song):
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO songs (song_id, title, artist, genre, duration,
                                   sample_rate, hash_count, upload_timestamp)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (song_id) DO UPDATE SET
                    title = EXCLUDED.title,
                    artist = EXCLUDED.artist,
                    genre = EXCLUDED.genre,
                    duration = EXCLUDED.duration,
                    sample_rate = EXCLUDED.sample_rate,
                    hash_count = EXCLUDED.hash_count,
                    upload_timestamp = EXCLUDED.upload_timestamp
            """, (song.id, song.title, song.artist, song.genre, song.duration,
                  song.sample_rate, song.hash_count, song.upload_timestamp))

    def get(self, song_id):
        with self._cursor() as cur:
            cur.execute("""
                SELECT song_id, title, artist, genre, duration,
                       sample_rate, hash_count, upload_timestamp
                FROM songs WHERE song_id = %s
            """, (song_id,))
            row = cur.fetchone()
        if row is None:
            return None
        return Song(
            id=row[0], title=row[1], artist=row[2], genre=row[3], duration=row[4],
            sample_rate=row[5], hash_count=row[6], upload_timestamp=row[7],
        )

    def register(self, song_id):
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO song_registry (song_id) VALUES (%s) ON CONFLICT DO NOTHING",
                (song_id,),
            )

    def list_ids(self, offset, limit):
        _check_page(offset, limit)
        if limit == 0:
            return []
        with self._cursor() as cur:
            cur.execute(
                "SELECT song_id FROM song_registry ORDER BY song_id OFFSET %s LIMIT %s",
                (offset, limit),
            )
            return [r[0] for r in cur.fetchall()]

    def count(self):
        with self._cursor() as cur:
            cur.execute("SELECT count(*) FROM song_registry")
            return cur.fetchone()[0]

    # --- postings ---

    def append(self, hash_value, song_id):
        self.append_many([hash_value], song_id)

    def append_many(self, hashes, song_id):
        data_to_insert = [(h, song_id) for h in hashes]
        if not data_to_insert:
            return
        with self._cursor() as cur:
            execute_values(
                cur,
                "INSERT INTO postings (hash, song_id) VALUES %s ON CONFLICT DO NOTHING",
                data_to_insert,
            )

    def postings_for(self, hash_value):
        return self.postings_for_many([hash_value]).get(hash_value, set())

    def postings_for_many(self, hashes):
        hash_list = list(hashes)
        if not hash_list:
            return {}
        with self._cursor() as cur:
            cur.execute("SELECT hash, song_id FROM postings WHERE hash = ANY(%s)", (hash_list,))
            rows = cur.fetchall()
        found = {}
        for h, song_id in rows:
            found.setdefault(h, set()).add(song_id)
        return found

    # --- text tokens ---

    def add_tokens(self, song_id, tokens):
        rows = [(field, token, song_id) for field, token in tokens]
        if not rows:
            return
        with self._cursor() as cur:
            execute_values(
                cur,
                "INSERT INTO text_tokens (field, token, song_id) VALUES %s ON CONFLICT DO NOTHING",
                rows,
            )

    def search_tokens(self, words):
        word_list = list(set(words))
        if not word_list:
            return set()
        with self._cursor() as cur:
            cur.execute("SELECT DISTINCT song_id FROM text_tokens WHERE token = ANY(%s)", (word_list,))
            return {r[0] for r in cur.fetchall()}

    def close(self):
        if not self.pool.closed:
            self.pool.closeall()
