## encoder.py

import logging
from typing import Dict, Iterable, NamedTuple, Optional

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix

from config import CONFIG, ACCUMULATOR_PARAMS, validate_vector_shape
from errors import ConfigurationError

logger = logging.getLogger(__name__)


class SparseVector(NamedTuple):
    """Sparse ternary context vector as (position, sign) arrays of length m."""
    indices: np.ndarray     # distinct positions in [0, dimension)
    signs: np.ndarray       # +1 / -1, int8, aligned with indices
    dimension: int

    @property
    def nnz(self) -> int:
        return int(self.indices.shape[0])

    def to_dense(self, dtype=ACCUMULATOR_PARAMS['DTYPE']) -> np.ndarray:
        """Dense copy, for inspection and tests only."""
        dense = np.zeros(self.dimension, dtype=dtype)
        dense[self.indices] = self.signs
        return dense


def _context_rng(context_id: int, seed: int) -> np.random.Generator:
    # Keyed per-context stream: no shared generator is walked sequentially.
    return np.random.default_rng(np.random.SeedSequence([int(seed), int(context_id)]))


def generate_random_vector(
    context_id: int,
    seed: int = CONFIG['RANDOM_SEED'],
    n: int = CONFIG['N_DIMENSION'],
    m: int = CONFIG['M_NONZEROS'],
) -> SparseVector:
    """
    Generates the sparse ternary random vector of one context.
    A pure function of (context_id, seed, n, m): exactly m distinct positions,
    the first ceil(m/2) sampled positions set to +1 and the rest to -1.
    """
    validate_vector_shape(n, m)
    if context_id < 0:
        raise ConfigurationError(f"context_id must be non-negative, got {context_id}")
    if seed < 0:
        raise ConfigurationError(f"seed must be non-negative, got {seed}")

    rng = _context_rng(context_id, seed)
    positions = rng.choice(n, size=m, replace=False).astype(np.intp)

    signs = np.full(m, -1, dtype=np.int8)
    signs[:(m + 1) // 2] = 1

    return SparseVector(indices=positions, signs=signs, dimension=n)


class ContextVectorStore:
    """
    Lazily memoized context vectors keyed by context id.

    Entries are immutable once generated. Concurrent readers need no lock:
    two threads racing on the same id both produce the same vector.
    """

    def __init__(
        self,
        seed: int = CONFIG['RANDOM_SEED'],
        n: int = CONFIG['N_DIMENSION'],
        m: int = CONFIG['M_NONZEROS'],
        cache: bool = True,
    ):
        validate_vector_shape(n, m)
        if seed < 0:
            raise ConfigurationError(f"seed must be non-negative, got {seed}")
        self.seed = seed
        self.n = n
        self.m = m
        self.cache = cache
        self._vectors: Dict[int, SparseVector] = {}

    def get(self, context_id: int) -> SparseVector:
        vector = self._vectors.get(context_id)
        if vector is None:
            vector = generate_random_vector(context_id, self.seed, self.n, self.m)
            if self.cache:
                self._vectors[context_id] = vector
        return vector

    __getitem__ = get

    def __call__(self, context_id: int) -> SparseVector:
        return self.get(context_id)

    def __len__(self):
        return len(self._vectors)

    def __contains__(self, context_id):
        return context_id in self._vectors

    def precompute(self, context_ids: Iterable[int]) -> None:
        """Generates and caches vectors up front (context count x m entries)."""
        for context_id in context_ids:
            if context_id not in self._vectors:
                self._vectors[context_id] = generate_random_vector(
                    context_id, self.seed, self.n, self.m
                )
        logger.debug("Context vector store holds %d vectors", len(self._vectors))

    def clear(self) -> None:
        self._vectors.clear()

    def to_matrix(self, num_contexts: int, context_ids: Optional[Iterable[int]] = None) -> csr_matrix:
        """
        Stacks context vectors into a sparse (num_contexts x n) projection matrix.
        Rows for ids not listed in `context_ids` stay empty.
        """
        ids = range(num_contexts) if context_ids is None else sorted(set(context_ids))
        rows, cols, vals = [], [], []
        for context_id in ids:
            if context_id >= num_contexts:
                raise ConfigurationError(
                    f"context_id {context_id} outside projection of {num_contexts} rows"
                )
            vector = self.get(context_id)
            rows.append(np.full(vector.nnz, context_id, dtype=np.intp))
            cols.append(vector.indices)
            vals.append(vector.signs)

        if rows:
            row_idx = np.concatenate(rows)
            col_idx = np.concatenate(cols)
            data = np.concatenate(vals).astype(ACCUMULATOR_PARAMS['DTYPE'])
        else:
            row_idx = col_idx = np.zeros(0, dtype=np.intp)
            data = np.zeros(0, dtype=ACCUMULATOR_PARAMS['DTYPE'])

        P = coo_matrix((data, (row_idx, col_idx)), shape=(num_contexts, self.n))
        return P.tocsr()


def build_projection_matrix(
    num_contexts: int,
    seed: int = CONFIG['RANDOM_SEED'],
    n: int = CONFIG['N_DIMENSION'],
    m: int = CONFIG['M_NONZEROS'],
) -> csr_matrix:
    """Generates the sparse (num_contexts x n) matrix of all context vectors."""
    P = ContextVectorStore(seed=seed, n=n, m=m, cache=False).to_matrix(num_contexts)
    logger.info(
        "Projection matrix built: shape %s, density %.2f%%",
        P.shape, 100.0 * m / n,
    )
    return P
