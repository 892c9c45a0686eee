## builder.py

import logging
from typing import Callable, Iterable, Mapping, Optional, Sequence

import numpy as np

from config import IndexingConfig
from encoder import ContextVectorStore
from errors import ConfigurationError
from indexer import CorpusIndexer, Tokenizer, whitespace_tokenize
from retrieval import EmbeddingTable
from storage import accumulate_tokens

logger = logging.getLogger(__name__)


# ------------------------------------------------
# I. Indexing (single pass per shard)
# ------------------------------------------------
def index_corpus(
    contexts: Iterable[str],
    tokenizer: Tokenizer = whitespace_tokenize,
    config: Optional[IndexingConfig] = None,
    start_id: int = 0,
    should_stop: Optional[Callable[[], bool]] = None,
) -> CorpusIndexer:
    """
    Indexes raw context strings, assigning ids in corpus order from `start_id`.
    Pass a distinct `start_id` per shard so shards can be merged.
    """
    config = config or IndexingConfig()
    if start_id < 0:
        raise ConfigurationError(f"start_id must be non-negative, got {start_id}")
    indexer = CorpusIndexer(tokenizer=tokenizer, strict=config.strict)
    indexer.index(enumerate(contexts, start=start_id), should_stop=should_stop)
    return indexer


def merge_shards(shards: Sequence[CorpusIndexer]) -> CorpusIndexer:
    """Sums the partial counts of independently indexed shards."""
    if not shards:
        return CorpusIndexer()
    merged = CorpusIndexer(tokenizer=shards[0].tokenizer, strict=shards[0].strict)
    for shard in shards:
        merged.merge(shard)
    return merged


# ------------------------------------------------
# II. Accumulation
# ------------------------------------------------
def build_from_indexer(
    indexer: CorpusIndexer,
    config: Optional[IndexingConfig] = None,
    should_stop: Optional[Callable[[], bool]] = None,
    completed: Optional[Mapping[str, np.ndarray]] = None,
) -> EmbeddingTable:
    """
    Accumulates a running sum for every observed token (retained or not)
    and wraps them in an EmbeddingTable that filters by min_count.

    To resume after AccumulationCancelled, pass its `completed` sums back
    in; only the remaining tokens are accumulated.
    """
    config = config or IndexingConfig()
    store = ContextVectorStore(
        seed=config.seed, n=config.dimension, m=config.nonzeros, cache=False,
    )

    sums = accumulate_tokens(
        indexer.incidence,
        store,
        num_contexts=indexer.num_contexts,
        workers=config.workers,
        shard_size=config.shard_size,
        should_stop=should_stop,
        completed=completed,
    )

    table = EmbeddingTable.from_sums(
        sums, indexer.frequencies, context_count=indexer.num_contexts, config=config,
    )
    logger.info(
        "Embedding table built: %d contexts, %d observed tokens, %d retained (min_count=%d)",
        table.context_count, table.observed_count, len(table), config.min_count,
    )
    return table


def build_embedding_table(
    contexts: Iterable[str],
    tokenizer: Tokenizer = whitespace_tokenize,
    config: Optional[IndexingConfig] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> EmbeddingTable:
    """
    corpus -> CorpusIndexer -> VocabularyFilter -> accumulation -> EmbeddingTable.

    An empty corpus yields an empty table. If `should_stop` fires during
    indexing, the consumed contexts are still fully accumulated, so the table
    covers contexts [0, table.context_count) and the rest can be appended
    with `table.extend`. If it fires during accumulation,
    AccumulationCancelled is raised.
    """
    config = config or IndexingConfig()
    stopped_early = False

    def stop_indexing() -> bool:
        nonlocal stopped_early
        stopped_early = should_stop is not None and should_stop()
        return stopped_early

    indexer = index_corpus(contexts, tokenizer, config, should_stop=stop_indexing)
    return build_from_indexer(indexer, config, should_stop=None if stopped_early else should_stop)


# Simple corpus for the demo
sample_corpus = [
    "the cat sat on the mat",
    "the dog sat on the rug",
    "the cat chased the dog",
    "a dog and a cat shared the rug",
    "the mat was under the cat",
    "the rug was under the dog",
]


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    demo_config = IndexingConfig(dimension=64, nonzeros=8, min_count=1, seed=42)
    print(f"\n--- Building random indexing embeddings ({len(sample_corpus)} contexts) ---")
    table = build_embedding_table(sample_corpus, config=demo_config)
    print(f"Retained {len(table)} tokens: {sorted(table.tokens())}")

    def cosine(a, b):
        na, nb = np.linalg.norm(a), np.linalg.norm(b)
        return float(a @ b / (na * nb)) if na > 0 and nb > 0 else 0.0

    for a, b in [("cat", "dog"), ("mat", "rug"), ("cat", "the")]:
        if a in table and b in table:
            print(f"cos({a}, {b}) = {cosine(table.get(a), table.get(b)):.4f}")

    # Incremental extension: only the new context's tokens are touched
    new_id = table.update("the cat sat on the rug".split())
    print(f"Appended context {new_id}; 'rug' frequency is now {table.frequency('rug')}")
