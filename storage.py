## storage.py

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
from scipy.sparse import spmatrix

from config import CONFIG, ACCUMULATOR_PARAMS
from encoder import ContextVectorStore, SparseVector
from errors import AccumulationCancelled, ConfigurationError
from indexer import Incidence, build_incidence_matrix

logger = logging.getLogger(__name__)

DTYPE = ACCUMULATOR_PARAMS['DTYPE']

VectorSource = Union[Callable[[int], SparseVector], Mapping[int, SparseVector]]


def _fetcher(vector_source: VectorSource) -> Callable[[int], SparseVector]:
    return vector_source if callable(vector_source) else vector_source.__getitem__


# --- 1. PER-TOKEN ACCUMULATION ---
def scatter_add(r: np.ndarray, vector: SparseVector, count: int) -> None:
    """r += count * v, touching only v's m positions."""
    # Positions are distinct, so fancy-index += needs no np.add.at
    r[vector.indices] += vector.signs.astype(r.dtype) * count


def accumulate(
    token: str,
    incidence_list: Incidence,
    vector_source: VectorSource,
    n: int = CONFIG['N_DIMENSION'],
) -> np.ndarray:
    """
    r_t = sum_i n_it * v_i over the (context_id, count) pairs of one token.
    Complexity: O(len(incidence_list) * m), integer arithmetic only.
    """
    fetch = _fetcher(vector_source)
    r = np.zeros(n, dtype=DTYPE)
    for context_id, count in incidence_list:
        vector = fetch(context_id)
        if vector.dimension != n:
            raise ConfigurationError(
                f"Context {context_id} vector for {token!r} has dimension {vector.dimension}, expected {n}"
            )
        scatter_add(r, vector, count)
    return r


# --- 2. BLOCK ACCUMULATION (sparse x sparse) ---
def accumulate_matrix(incidence: spmatrix, projection: spmatrix) -> np.ndarray:
    """
    R = A @ P for a block of tokens: A is (tokens x contexts) counts,
    P is (contexts x n) context vectors. Both integer, so R is exact.
    """
    if incidence.shape[1] != projection.shape[0]:
        raise ConfigurationError(
            f"Incidence has {incidence.shape[1]} contexts, projection has {projection.shape[0]}"
        )
    R = incidence @ projection
    return np.asarray(R.toarray(), dtype=DTYPE)


def _shards(tokens: Sequence[str], shard_size: int) -> List[Sequence[str]]:
    return [tokens[i:i + shard_size] for i in range(0, len(tokens), shard_size)]


def accumulate_tokens(
    incidence_by_token: Mapping[str, Incidence],
    store: ContextVectorStore,
    num_contexts: Optional[int] = None,
    workers: int = ACCUMULATOR_PARAMS['N_WORKERS'],
    shard_size: int = ACCUMULATOR_PARAMS['SHARD_SIZE'],
    use_matrix: bool = True,
    should_stop: Optional[Callable[[], bool]] = None,
    completed: Optional[Mapping[str, np.ndarray]] = None,
) -> Dict[str, np.ndarray]:
    """
    Accumulates embeddings for every token in `incidence_by_token`.

    Tokens are split into disjoint shards; each shard only reads its own
    incidence lists and the shared, read-only context vectors, so shards run
    independently (on `workers` threads when workers > 1).

    With use_matrix=True all context vectors are precomputed once into a
    sparse projection and each shard is one sparse product. Otherwise each
    token is summed from the store, generating vectors lazily.

    `should_stop` is checked between shards. On cancel, AccumulationCancelled
    carries the sums of all whole shards that finished. Passing those back
    as `completed` resumes: their tokens are skipped and their sums kept.
    """
    if workers < 1:
        raise ConfigurationError(f"workers must be >= 1, got {workers}")
    if shard_size < 1:
        raise ConfigurationError(f"shard_size must be >= 1, got {shard_size}")

    done: Dict[str, np.ndarray] = dict(completed or {})
    tokens = sorted(t for t in incidence_by_token if t not in done)
    if num_contexts is None:
        num_contexts = 1 + max(
            (cid for postings in incidence_by_token.values() for cid, _ in postings),
            default=-1,
        )

    projection = None
    if use_matrix:
        projection = store.to_matrix(num_contexts)

    def run_shard(shard: Sequence[str]) -> Dict[str, np.ndarray]:
        if projection is not None:
            A = build_incidence_matrix(incidence_by_token, shard, num_contexts)
            R = accumulate_matrix(A, projection)
            return {token: R[row] for row, token in enumerate(shard)}
        return {token: accumulate(token, incidence_by_token[token], store, store.n) for token in shard}

    def stopped() -> bool:
        return should_stop is not None and should_stop()

    shards = _shards(tokens, shard_size)
    logger.info(
        "Accumulating %d tokens (%d already done) over %d contexts in %d shards (%d workers)",
        len(tokens), len(done), num_contexts, len(shards), workers,
    )

    if workers == 1:
        for idx, shard in enumerate(shards):
            if stopped():
                raise AccumulationCancelled(done)
            done.update(run_shard(shard))
            logger.debug("Shard %d/%d done", idx + 1, len(shards))
        return done

    cancelled = False
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ri-accumulate") as executor:
        futures = [executor.submit(run_shard, shard) for shard in shards]
        for idx, future in enumerate(futures):
            if not cancelled and stopped():
                cancelled = True
                for pending in futures:
                    pending.cancel()
            if future.cancelled():
                continue
            done.update(future.result())
            logger.debug("Shard %d/%d done", idx + 1, len(shards))

    if cancelled:
        raise AccumulationCancelled(done)
    return done


# --- 3. INCREMENTAL UPDATE ---
def add_context(
    sums: Dict[str, np.ndarray],
    token_counts: Mapping[str, int],
    vector: SparseVector,
) -> None:
    """
    Adds one new context's contribution n_it * v to the running sum of each
    of its tokens. O(distinct tokens in the context * m); other sums are
    never touched.
    """
    for token, count in token_counts.items():
        r = sums.get(token)
        if r is None:
            r = np.zeros(vector.dimension, dtype=DTYPE)
            sums[token] = r
        scatter_add(r, vector, count)
