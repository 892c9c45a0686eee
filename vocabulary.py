## vocabulary.py

from typing import FrozenSet, Mapping

from config import VOCAB_PARAMS, validate_min_count


def is_retained(frequency: int, min_count: int = VOCAB_PARAMS['MIN_COUNT']) -> bool:
    """A token is kept iff its total frequency is strictly above min_count."""
    return frequency > min_count


def select_vocabulary(
    token_frequencies: Mapping[str, int],
    min_count: int = VOCAB_PARAMS['MIN_COUNT'],
) -> FrozenSet[str]:
    """
    Returns the tokens that receive a materialized embedding.
    Raising min_count can only shrink the result.
    """
    validate_min_count(min_count)
    return frozenset(
        token for token, freq in token_frequencies.items() if is_retained(freq, min_count)
    )
