import operator
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from errors import MalformedQuery


class SongMetadata(BaseModel):
    """What the client tells us about a song when it is uploaded."""

    title: str
    artist: str
    genre: Optional[str] = None
    duration: float = Field(default=0.0, ge=0)
    sample_rate: int = Field(default=0, ge=0)

    @field_validator("title", "artist")
    @classmethod
    def not_blank(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class Song(SongMetadata):
    id: int
    hash_count: int = Field(ge=0)
    upload_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_metadata(cls, song_id, metadata, hash_count):
        return cls(id=song_id, hash_count=hash_count, **metadata.model_dump())


class MatchResult(BaseModel):
    song: Song
    confidence: float
    match_count: int
    unique_matches: int
    total_query_hashes: int


INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


def coerce_hashes(values):
    """
    Turns a sequence of hash values into a list of Python ints, keeping order and duplicates.
    Decimal strings are accepted since 64-bit hashes travel as strings over JSON.
    """
    if values is None:
        return []

    hashes = []
    for value in values:
        if isinstance(value, bool):
            raise MalformedQuery(f"hash values must be integers, got {value!r}")
        if isinstance(value, str):
            try:
                value = int(value.strip())
            except ValueError:
                raise MalformedQuery(f"hash value {value!r} is not a decimal integer") from None
        else:
            try:
                # numpy integer scalars support __index__, floats do not
                value = operator.index(value)
            except TypeError:
                raise MalformedQuery(f"hash values must be integers, got {value!r}") from None
        if not INT64_MIN <= value <= INT64_MAX:
            raise MalformedQuery(f"hash value {value} does not fit in 64 signed bits")
        hashes.append(value)
    return hashes
