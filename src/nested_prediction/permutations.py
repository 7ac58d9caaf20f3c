"""Generation of response relabellings for the permutation test.

A permutation is an ``(n,)`` index array *perm*; the permuted response
is ``y[perm]``, i.e. sample *i* receives the response originally
observed at sample ``perm[i]``.  Permutation 0 is always the identity
and yields the reference (unpermuted) statistic.

Three modes, chosen once when the engine is built:

1. **Unconstrained** — each draw is ``rng.permutation(n)``.

2. **Structure-preserving** — used when a dependency matrix holds at
   least one pair.  Pairs of each type (1 and 2, e.g. monozygotic and
   dizygotic twins) form separate pools.  Within a pool the pairs are
   shuffled by a random *derangement* (no pair keeps its own slot, a
   lone pair maps onto itself), and each pair receives the members of
   its target pair either in order or swapped, with probability 1/2.
   All remaining samples are permuted freely among themselves.  Paired
   samples therefore keep being paired with a sample of the same pair
   type after relabelling, which preserves the exchangeability
   structure under H₀.

3. **Pre-supplied** — an ``(n, P)`` array whose columns are used as
   given; ``P`` becomes the permutation count.

Every draw takes its own ``numpy.random.Generator`` so that
permutation *i* is reproducible independently of the others.
"""

from __future__ import annotations

import enum
import logging

import numpy as np

from ._errors import ConfigurationError
from .folds import dependency_pairs, validate_dependency

logger = logging.getLogger(__name__)


class PermutationMode(enum.Enum):
    UNCONSTRAINED = "unconstrained"
    STRUCTURE_PRESERVING = "structure_preserving"
    PRE_SUPPLIED = "pre_supplied"


# ------------------------------------------------------------------ #
# Derangements
# ------------------------------------------------------------------ #
#
# Rejection sampling: a uniform random permutation is a derangement
# with probability → 1/e, so the expected number of draws is ≈ e
# regardless of m.  m = 1 has no derangement; the lone pair maps onto
# itself.


def random_derangement(m: int, rng: np.random.Generator) -> np.ndarray:
    """Uniform random derangement of ``range(m)`` (identity for m = 1)."""
    if m <= 1:
        return np.arange(m)
    idx = np.arange(m)
    while True:
        perm = rng.permutation(m)
        if not np.any(perm == idx):
            return perm


def _validate_supplied(permutations: np.ndarray, n_samples: int) -> np.ndarray:
    perms = np.asarray(permutations)
    if perms.ndim == 1:
        perms = perms[:, np.newaxis]
    if perms.ndim != 2 or perms.shape[0] != n_samples:
        raise ConfigurationError(
            f"Pre-supplied permutations must have {n_samples} rows, got shape {perms.shape}."
        )
    if not np.issubdtype(perms.dtype, np.integer):
        if not np.allclose(perms, np.round(perms)):
            raise ConfigurationError("Pre-supplied permutations must hold integer indices.")
        perms = np.round(perms).astype(np.intp)
    expected = np.arange(n_samples)
    for j in range(perms.shape[1]):
        if not np.array_equal(np.sort(perms[:, j]), expected):
            raise ConfigurationError(
                f"Pre-supplied permutation column {j} is not a permutation of 0..{n_samples - 1}."
            )
    if not np.array_equal(perms[:, 0], expected):
        logger.warning(
            "Column 0 of the pre-supplied permutations is not the identity; "
            "it is replaced by the identity for the reference pass."
        )
    return perms.astype(np.intp)


class PermutationEngine:
    """Source of the permutations for one run.

    Args:
        n_samples: Number of samples *n*.
        n_permutations: Requested count, including the reference pass.
            Ignored in pre-supplied mode.
        dependency: Optional ``(n, n)`` dependency matrix with labels
            0 (independent), 1 and 2 (pair types).
        permutations: Optional ``(n, P)`` pre-supplied index array.
            Takes precedence over *dependency*.

    Raises:
        ConfigurationError: On malformed dependency or permutation
            arrays.
    """

    def __init__(
        self,
        n_samples: int,
        *,
        n_permutations: int = 1,
        dependency: np.ndarray | None = None,
        permutations: np.ndarray | None = None,
    ) -> None:
        self.n_samples = n_samples
        self._supplied: np.ndarray | None = None
        self._pairs: list[np.ndarray] = []
        self._free = np.arange(n_samples)

        if permutations is not None:
            self._supplied = _validate_supplied(permutations, n_samples)
            self.mode = PermutationMode.PRE_SUPPLIED
            self.n_permutations = self._supplied.shape[1]
            if n_permutations not in (1, self.n_permutations):
                logger.info(
                    "Nperm=%d overridden by %d pre-supplied permutations.",
                    n_permutations,
                    self.n_permutations,
                )
            return

        self.n_permutations = n_permutations
        self.mode = PermutationMode.UNCONSTRAINED
        if dependency is not None:
            dep = validate_dependency(dependency, n_samples)
            pools = [dependency_pairs(dep, label) for label in (1, 2)]
            # A sample claimed by a type-1 pair is not reused as type 2.
            used = set(pools[0].ravel().tolist())
            keep = [not (used & set(row.tolist())) for row in pools[1]]
            pools[1] = pools[1][np.asarray(keep, dtype=bool)].reshape(-1, 2)
            self._pairs = [pool for pool in pools if len(pool)]
            if self._pairs:
                self.mode = PermutationMode.STRUCTURE_PRESERVING
                paired = np.concatenate([pool.ravel() for pool in self._pairs])
                self._free = np.setdiff1d(np.arange(n_samples), paired)
                logger.debug(
                    "Structure-preserving permutations: %s pairs, %d free samples.",
                    [len(pool) for pool in self._pairs],
                    len(self._free),
                )

    def draw(self, index: int, rng: np.random.Generator) -> np.ndarray:
        """Return permutation *index*; index 0 is the identity."""
        if not 0 <= index < self.n_permutations:
            raise IndexError(
                f"Permutation index {index} out of range [0, {self.n_permutations})."
            )
        if index == 0:
            return np.arange(self.n_samples)
        if self.mode is PermutationMode.PRE_SUPPLIED:
            assert self._supplied is not None
            return self._supplied[:, index].copy()
        if self.mode is PermutationMode.UNCONSTRAINED:
            return rng.permutation(self.n_samples)
        return self._structured(rng)

    def _structured(self, rng: np.random.Generator) -> np.ndarray:
        perm = np.arange(self.n_samples)
        for pool in self._pairs:
            target = pool[random_derangement(len(pool), rng)]
            swap = rng.random(len(pool)) < 0.5
            target = np.where(swap[:, np.newaxis], target[:, ::-1], target)
            perm[pool.ravel()] = target.ravel()
        perm[self._free] = rng.permutation(self._free)
        return perm
