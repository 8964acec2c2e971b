import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed

from config import (
    HEAVY_DUPLICATE_PENALTY,
    HEAVY_DUPLICATE_RATIO,
    MEDIUM_DUPLICATE_PENALTY,
    MEDIUM_DUPLICATE_RATIO,
    MIN_BASE_CONFIDENCE,
)
from models import MatchResult, coerce_hashes

logger = logging.getLogger(__name__)


def duplicate_penalty(match_ratio):
    """Discount for candidates whose matches come from a few hash values repeating."""
    if match_ratio > HEAVY_DUPLICATE_RATIO:
        return HEAVY_DUPLICATE_PENALTY
    if match_ratio > MEDIUM_DUPLICATE_RATIO:
        return MEDIUM_DUPLICATE_PENALTY
    return 1.0


def score(match_count, unique_matches, total_query_hashes):
    """
    Confidence for one candidate song.

    base = unique_matches / total_query_hashes, zeroed below MIN_BASE_CONFIDENCE,
    then scaled by the duplicate penalty of match_count / unique_matches.
    """
    if total_query_hashes <= 0 or unique_matches <= 0:
        return 0.0
    base_confidence = unique_matches / total_query_hashes
    # The floor applies before the penalty
    if base_confidence < MIN_BASE_CONFIDENCE:
        return 0.0
    return base_confidence * duplicate_penalty(match_count / unique_matches)


class MatchingEngine:
    """Ranks catalog songs against a query fingerprint."""

    def __init__(self, catalog, postings, max_workers=8, lookup_batch_size=500):
        self.catalog = catalog
        self.postings = postings
        self.max_workers = max_workers
        self.lookup_batch_size = lookup_batch_size

    def match(self, query_hashes) -> list[MatchResult]:
        hashes = coerce_hashes(query_hashes)
        total_query_hashes = len(hashes)
        if total_query_hashes == 0:
            return []

        # Each distinct value is looked up once; its occurrences still all count
        occurrences = Counter(hashes)
        match_counts = Counter()
        matched_hashes = {}

        for h, song_ids in self._lookup(list(occurrences)):
            for song_id in song_ids:
                match_counts[song_id] += occurrences[h]
                matched_hashes.setdefault(song_id, set()).add(h)

        results = []
        for song_id, match_count in match_counts.items():
            unique_matches = len(matched_hashes[song_id])
            confidence = score(match_count, unique_matches, total_query_hashes)
            if confidence <= 0.0:
                continue

            song = self.catalog.get(song_id)
            if song is None:
                logger.warning("Posting references song %d with no catalog record, skipping", song_id)
                continue

            results.append(MatchResult(
                song=song,
                confidence=confidence,
                match_count=match_count,
                unique_matches=unique_matches,
                total_query_hashes=total_query_hashes,
            ))

        # Highest confidence first, equal scores by ascending id
        results.sort(key=lambda r: (-r.confidence, r.song.id))

        logger.info(
            "Matched %d query hashes (%d distinct): %d candidates, %d results",
            total_query_hashes, len(occurrences), len(match_counts), len(results),
        )
        return results

    def _lookup(self, distinct_hashes):
        """Yields (hash, song_ids) pairs, fanning batches out over a thread pool."""
        batches = [
            distinct_hashes[start:start + self.lookup_batch_size]
            for start in range(0, len(distinct_hashes), self.lookup_batch_size)
        ]
        if len(batches) <= 1 or self.max_workers <= 1:
            for batch in batches:
                yield from self.postings.postings_for_many(batch).items()
            return

        # Results fold into the accumulators on the calling thread only
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batches))) as executor:
            futures = [executor.submit(self.postings.postings_for_many, batch) for batch in batches]
            for future in as_completed(futures):
                yield from future.result().items()
