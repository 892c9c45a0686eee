## config.py

import os
from dataclasses import dataclass

import numpy as np

from errors import ConfigurationError

# --- 1. CORE ARCHITECTURE ---
CONFIG = {
    'N_DIMENSION': 300,        # Dimensionality (n) of context vectors and embeddings
    'M_NONZEROS': 30,          # Nonzero entries (m) per context vector, 10% density
    'RANDOM_SEED': 42,         # Global seed, combined with the context id per vector
}

# --- 2. VOCABULARY (VocabularyFilter) PARAMETERS ---
VOCAB_PARAMS = {
    'MIN_COUNT': 9,            # Keep a token iff its total frequency is > MIN_COUNT
}

# --- 3. INDEXER (CorpusIndexer) PARAMETERS ---
INDEXER_PARAMS = {
    'STRICT': False,           # Raise on a malformed context instead of skipping it
}

# --- 4. ACCUMULATOR PARAMETERS ---
ACCUMULATOR_PARAMS = {
    'DTYPE': np.int64,         # Exact integer accumulation, no float rounding
    'N_WORKERS': 1,            # Threads for token accumulation (1 = inline)
    'SHARD_SIZE': 2048,        # Tokens per accumulation shard
}


def validate_vector_shape(n: int, m: int) -> None:
    """Fails fast on an impossible (n, m) pair for a sparse ternary vector."""
    if n <= 0:
        raise ConfigurationError(f"dimension must be positive, got n={n}")
    if m <= 0:
        raise ConfigurationError(f"nonzero count must be positive, got m={m}")
    if m > n:
        raise ConfigurationError(f"nonzero count m={m} exceeds dimension n={n}")


def validate_min_count(min_count: int) -> None:
    if min_count < 0:
        raise ConfigurationError(f"min_count must be >= 0, got {min_count}")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class IndexingConfig:
    """
    Validated run configuration for building an embedding table.
    Defaults come from the module-level parameter dicts above.
    """
    dimension: int = CONFIG['N_DIMENSION']
    nonzeros: int = CONFIG['M_NONZEROS']
    seed: int = CONFIG['RANDOM_SEED']
    min_count: int = VOCAB_PARAMS['MIN_COUNT']
    strict: bool = INDEXER_PARAMS['STRICT']
    workers: int = ACCUMULATOR_PARAMS['N_WORKERS']
    shard_size: int = ACCUMULATOR_PARAMS['SHARD_SIZE']

    def __post_init__(self):
        validate_vector_shape(self.dimension, self.nonzeros)
        validate_min_count(self.min_count)
        if self.seed < 0:
            raise ConfigurationError(f"seed must be non-negative, got {self.seed}")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers}")
        if self.shard_size < 1:
            raise ConfigurationError(f"shard_size must be >= 1, got {self.shard_size}")

    @classmethod
    def from_env(cls) -> "IndexingConfig":
        """Create config from RI_* environment variables, falling back to defaults."""
        try:
            values = dict(
                dimension=int(os.environ.get("RI_DIMENSION", CONFIG['N_DIMENSION'])),
                nonzeros=int(os.environ.get("RI_NONZEROS", CONFIG['M_NONZEROS'])),
                seed=int(os.environ.get("RI_SEED", CONFIG['RANDOM_SEED'])),
                min_count=int(os.environ.get("RI_MIN_COUNT", VOCAB_PARAMS['MIN_COUNT'])),
                workers=int(os.environ.get("RI_WORKERS", ACCUMULATOR_PARAMS['N_WORKERS'])),
                shard_size=int(os.environ.get("RI_SHARD_SIZE", ACCUMULATOR_PARAMS['SHARD_SIZE'])),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid RI_* environment value: {e}") from e
        strict = _env_bool(os.environ.get("RI_STRICT", str(INDEXER_PARAMS['STRICT'])))
        return cls(strict=strict, **values)
