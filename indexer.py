## indexer.py

import logging
from collections import Counter
from typing import Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Set, Tuple

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix

from config import INDEXER_PARAMS, ACCUMULATOR_PARAMS
from errors import DuplicateContextError, MalformedContextError

logger = logging.getLogger(__name__)

Tokenizer = Callable[[str], Sequence[str]]
Incidence = List[Tuple[int, int]]   # [(context_id, count), ...]


# --- 1. TOKENIZERS ---
def whitespace_tokenize(text: str) -> List[str]:
    return text.split()


def simple_tokenize(text: str) -> List[str]:
    """Lowercase + simple split + strip punctuation."""
    toks = [t.strip(".,;:!?()[]{}\"'`).-_/") for t in text.lower().split()]
    return [t for t in toks if t]


# --- 2. PER-CONTEXT HELPERS ---
class SkippedContext(NamedTuple):
    context_id: int
    reason: str


def tokenize_context(context_id: int, text, tokenizer: Tokenizer) -> Sequence[str]:
    """Runs the tokenizer, turning any failure into MalformedContextError."""
    if not isinstance(text, str):
        raise MalformedContextError(context_id, f"expected str, got {type(text).__name__}")
    try:
        return tokenizer(text)
    except Exception as e:
        raise MalformedContextError(context_id, f"tokenizer failed: {e}") from e


def count_context(context_id: int, tokens: Iterable[str]) -> Counter:
    """Incidence counts n_it of one context."""
    counts = Counter()
    for token in tokens:
        if not isinstance(token, str):
            raise MalformedContextError(
                context_id, f"token {token!r} is {type(token).__name__}, not str"
            )
        counts[token] += 1
    return counts


# --- 3. CORPUS INDEXER ---
class CorpusIndexer:
    """
    Single pass over (context_id, text) pairs building the sparse incidence
    structure token -> [(context_id, count)] and global token frequencies.

    Run one indexer per corpus shard and combine them with `merge`.
    """

    def __init__(self, tokenizer: Tokenizer = whitespace_tokenize, strict: bool = INDEXER_PARAMS['STRICT']):
        self.tokenizer = tokenizer
        self.strict = strict
        self.incidence: Dict[str, Incidence] = {}
        self.frequencies: Counter = Counter()
        self.skipped: List[SkippedContext] = []
        self._context_ids: Set[int] = set()
        self.num_contexts = 0   # one past the highest context id seen

    def __len__(self):
        return len(self.incidence)

    def __contains__(self, token):
        return token in self.incidence

    @property
    def context_ids(self) -> Set[int]:
        return set(self._context_ids)

    def _claim(self, context_id: int) -> None:
        if context_id in self._context_ids:
            raise DuplicateContextError(f"Context {context_id} already indexed")
        self._context_ids.add(context_id)
        self.num_contexts = max(self.num_contexts, context_id + 1)

    def _skip(self, error: MalformedContextError) -> None:
        if self.strict:
            raise error
        logger.warning("Skipping context %d: %s", error.context_id, error.reason)
        self.skipped.append(SkippedContext(error.context_id, error.reason))

    def add_tokens(self, context_id: int, tokens: Iterable[str]) -> Optional[Counter]:
        """Indexes an already tokenized context. Returns its counts, or None if skipped."""
        self._claim(context_id)
        try:
            counts = count_context(context_id, tokens)
        except MalformedContextError as e:
            self._skip(e)
            return None

        for token, count in counts.items():
            self.incidence.setdefault(token, []).append((context_id, count))
            self.frequencies[token] += count
        return counts

    def add(self, context_id: int, text: str) -> Optional[Counter]:
        """Tokenizes and indexes one context. Returns its counts, or None if skipped."""
        try:
            tokens = tokenize_context(context_id, text, self.tokenizer)
        except MalformedContextError as e:
            self._claim(context_id)
            self._skip(e)
            return None
        return self.add_tokens(context_id, tokens)

    def index(
        self,
        contexts: Iterable[Tuple[int, str]],
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> int:
        """
        Indexes a stream of (context_id, text) pairs.
        Stops between whole contexts once `should_stop()` is true.
        Returns the number of contexts consumed.
        """
        consumed = 0
        for context_id, text in contexts:
            if should_stop is not None and should_stop():
                logger.info("Indexing stopped after %d contexts", consumed)
                break
            self.add(context_id, text)
            consumed += 1

        logger.info(
            "Indexed %d contexts: %d distinct tokens, %d skipped",
            consumed, len(self.incidence), len(self.skipped),
        )
        return consumed

    def merge(self, other: "CorpusIndexer") -> "CorpusIndexer":
        """Folds another shard's counts into this one (sums are order independent)."""
        overlap = self._context_ids & other._context_ids
        if overlap:
            raise DuplicateContextError(
                f"Shards overlap on {len(overlap)} context ids, e.g. {min(overlap)}"
            )
        for token, postings in other.incidence.items():
            self.incidence.setdefault(token, []).extend(postings)
        self.frequencies.update(other.frequencies)
        self.skipped.extend(other.skipped)
        self._context_ids |= other._context_ids
        self.num_contexts = max(self.num_contexts, other.num_contexts)
        return self

    def incidence_matrix(self, tokens: Sequence[str], num_contexts: Optional[int] = None) -> csr_matrix:
        num_contexts = self.num_contexts if num_contexts is None else num_contexts
        return build_incidence_matrix(self.incidence, tokens, num_contexts)


def build_incidence_matrix(
    incidence: Mapping[str, Incidence],
    tokens: Sequence[str],
    num_contexts: int,
) -> csr_matrix:
    """
    Sparse (len(tokens) x num_contexts) matrix of counts n_it for a block
    of tokens. Meant for one shard of the vocabulary at a time.
    """
    rows, cols, vals = [], [], []
    for row, token in enumerate(tokens):
        for context_id, count in incidence.get(token, ()):
            rows.append(row)
            cols.append(context_id)
            vals.append(count)

    A = coo_matrix(
        (np.asarray(vals, dtype=ACCUMULATOR_PARAMS['DTYPE']),
         (np.asarray(rows, dtype=np.intp), np.asarray(cols, dtype=np.intp))),
        shape=(len(tokens), num_contexts),
    )
    # COO -> CSR sums duplicate (row, col) entries
    return A.tocsr()
