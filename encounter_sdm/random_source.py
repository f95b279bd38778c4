"""
Seeded randomness for the pipeline.

A single RandomSource is created at the top of a run and passed by parameter
to every stage that samples. Each stage asks for a named stream
("subsample", "split", "ensemble", ...) and gets a generator derived from the
run seed and the stream name only. Streams are therefore independent of the
order in which stages are called, so re-running one stage on its own gives
exactly the draws it made inside the full run.

Usage:

    from encounter_sdm.random_source import RandomSource

    rs = RandomSource(seed=1)
    rng = rs.generator("subsample")       # numpy Generator
    seed = rs.integer_seed("ensemble")    # int for scikit-learn random_state
"""

from __future__ import annotations

import zlib

import numpy as np

from .errors import ConfigurationError


class RandomSource:
    """Run-level seed from which every stage derives its own stream."""

    def __init__(self, seed: int = 1):
        if isinstance(seed, bool) or not isinstance(seed, (int, np.integer)) or seed < 0:
            raise ConfigurationError(f"Random seed must be a non-negative integer, got {seed!r}")
        self.seed = int(seed)

    def _sequence(self, stream: str) -> np.random.SeedSequence:
        # crc32 is stable across interpreter runs, unlike hash()
        key = zlib.crc32(stream.encode("utf-8"))
        return np.random.SeedSequence([self.seed, key])

    def generator(self, stream: str) -> np.random.Generator:
        """Fresh numpy Generator for the named stream."""
        return np.random.default_rng(self._sequence(stream))

    def integer_seed(self, stream: str) -> int:
        """A 32-bit integer seed for libraries that take random_state=int."""
        return int(self._sequence(stream).generate_state(1, dtype=np.uint32)[0])

    def __repr__(self) -> str:
        return f"RandomSource(seed={self.seed})"
