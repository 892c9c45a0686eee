"""
Shared test fixtures and configuration for pytest.
"""

import sys
from pathlib import Path

import pytest

# Flat module layout: make the repo root importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import IndexingConfig


@pytest.fixture
def small_config():
    """n=10, m=4, every observed token retained."""
    return IndexingConfig(dimension=10, nonzeros=4, seed=42, min_count=0)


@pytest.fixture
def toy_corpus():
    return ["the cat sat", "the dog sat", "the cat ran"]


@pytest.fixture
def longer_corpus():
    return [
        "the cat sat on the mat",
        "the dog sat on the rug",
        "the cat chased the dog",
        "a dog and a cat shared the rug",
        "the mat was under the cat",
        "the rug was under the dog",
        "a bird sat on the dog",
        "the bird and the cat",
        "under the mat the bird slept",
        "the dog the dog the dog",
    ]
