## retrieval.py

import logging
from typing import Callable, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

import numpy as np

from config import IndexingConfig, validate_min_count
from encoder import ContextVectorStore
from errors import MalformedContextError, UnknownTokenError
from indexer import Tokenizer, count_context, tokenize_context, whitespace_tokenize
from storage import DTYPE, add_context
from vocabulary import is_retained, select_vocabulary

logger = logging.getLogger(__name__)


class EmbeddingTable:
    """
    Token -> dense integer embedding, the only externally visible artifact.

    Running sums are kept for every token ever observed; only tokens whose
    frequency is above `min_count` are visible through get/tokens/items.
    Lowering the threshold later is a re-filter, not a recomputation.
    """

    def __init__(self, config: Optional[IndexingConfig] = None):
        self.config = config or IndexingConfig()
        self._min_count = self.config.min_count
        self._sums: Dict[str, np.ndarray] = {}
        self._frequencies: Dict[str, int] = {}
        self._retained: set = set()
        self._context_count = 0
        self._vectors = ContextVectorStore(
            seed=self.config.seed, n=self.config.dimension, m=self.config.nonzeros,
            cache=False,
        )

    @classmethod
    def from_sums(
        cls,
        sums: Mapping[str, np.ndarray],
        frequencies: Mapping[str, int],
        context_count: int,
        config: Optional[IndexingConfig] = None,
    ) -> "EmbeddingTable":
        """Wraps the output of a batch build. `sums` must cover every token in `frequencies`."""
        table = cls(config)
        missing = set(frequencies) - set(sums)
        if missing:
            raise ValueError(f"{len(missing)} tokens have a frequency but no sum, e.g. {min(missing)!r}")
        for token, r in sums.items():
            if r.shape != (table.config.dimension,):
                raise ValueError(f"Sum for {token!r} has shape {r.shape}, expected ({table.config.dimension},)")
            table._sums[token] = np.asarray(r, dtype=DTYPE)
        table._frequencies = {token: int(freq) for token, freq in frequencies.items()}
        table._retained = set(select_vocabulary(table._frequencies, table._min_count))
        table._context_count = context_count
        return table

    # --- QUERIES ---
    def get(self, token: str) -> np.ndarray:
        """Returns a copy of the embedding, or raises UnknownTokenError."""
        if token not in self._retained:
            raise UnknownTokenError(token)
        return self._sums[token].copy()

    __getitem__ = get

    def find(self, token: str) -> Optional[np.ndarray]:
        """Like get, but None when absent. A zero vector means found."""
        if token not in self._retained:
            return None
        return self._sums[token].copy()

    def __contains__(self, token) -> bool:
        return token in self._retained

    def __len__(self) -> int:
        return len(self._retained)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._retained))

    def tokens(self) -> FrozenSet[str]:
        return frozenset(self._retained)

    def items(self) -> Iterator[Tuple[str, np.ndarray]]:
        """(token, embedding copy) in lexicographic token order."""
        for token in sorted(self._retained):
            yield token, self._sums[token].copy()

    def dimension(self) -> int:
        return self.config.dimension

    def frequency(self, token: str) -> int:
        """Total occurrences of any observed token, retained or not (0 if never seen)."""
        return self._frequencies.get(token, 0)

    @property
    def context_count(self) -> int:
        return self._context_count

    @property
    def min_count(self) -> int:
        return self._min_count

    @property
    def observed_count(self) -> int:
        """Tokens with a running sum, including those below the threshold."""
        return len(self._sums)

    def as_matrix(self) -> Tuple[List[str], np.ndarray]:
        """Retained tokens (lexicographic) and the matching (tokens x n) matrix."""
        tokens = sorted(self._retained)
        if not tokens:
            return tokens, np.zeros((0, self.config.dimension), dtype=DTYPE)
        return tokens, np.vstack([self._sums[t] for t in tokens])

    # --- INCREMENTAL UPDATES ---
    def update(self, tokens: Iterable[str]) -> int:
        """
        Appends one tokenized context and returns its context id.
        Only the sums and retention of this context's tokens change, so the
        cost does not depend on how many contexts came before.
        """
        context_id = self._context_count
        if isinstance(tokens, str):
            raise MalformedContextError(
                context_id, "expected a token sequence, got str (use update_text for raw text)"
            )
        counts = count_context(context_id, tokens)
        vector = self._vectors.get(context_id)

        add_context(self._sums, counts, vector)
        for token, count in counts.items():
            freq = self._frequencies.get(token, 0) + count
            self._frequencies[token] = freq
            if is_retained(freq, self._min_count):
                self._retained.add(token)

        self._context_count += 1
        return context_id

    def update_text(self, text: str, tokenizer: Tokenizer = whitespace_tokenize) -> int:
        """Tokenizes and appends one context. Raises MalformedContextError on bad input."""
        tokens = tokenize_context(self._context_count, text, tokenizer)
        return self.update(tokens)

    def skip_context(self) -> int:
        """Consumes a context id without content (a skipped malformed context)."""
        context_id = self._context_count
        self._context_count += 1
        return context_id

    def extend(
        self,
        texts: Iterable[str],
        tokenizer: Tokenizer = whitespace_tokenize,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> int:
        """
        Appends many contexts. Malformed ones are skipped (their id is still
        consumed) unless the config is strict. Stops between whole contexts
        once `should_stop()` is true. Returns the number of contexts consumed.
        """
        consumed = 0
        for text in texts:
            if should_stop is not None and should_stop():
                logger.info("Extend stopped after %d contexts", consumed)
                break
            try:
                self.update_text(text, tokenizer)
            except MalformedContextError as e:
                if self.config.strict:
                    raise
                logger.warning("Skipping context %d: %s", e.context_id, e.reason)
                self.skip_context()
            consumed += 1
        return consumed

    def set_min_count(self, min_count: int) -> None:
        """Re-filters all observed tokens against a new threshold."""
        validate_min_count(min_count)
        self._min_count = min_count
        self._retained = set(select_vocabulary(self._frequencies, min_count))
        logger.info("Threshold set to %d: %d of %d tokens retained",
                    min_count, len(self._retained), len(self._sums))
