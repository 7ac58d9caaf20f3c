"""Cross-validation fold construction.

Folds are built from *assignable units* rather than from samples:
samples linked by the dependency structure (twins, siblings, repeated
measures of one subject) form a single unit, and a unit is always
placed whole into one fold.  Held-out rows therefore never share
family structure with training rows.

Placement is greedy and balanced:

1. Multi-sample units go first, largest first, each into the currently
   smallest fold.
2. Singletons follow.  For the multinomial family they are placed class
   by class into the fold holding the fewest members of that class
   (ties: smallest fold, then lowest fold index), which keeps per-fold
   class proportions close to the global ones.  Otherwise each goes to
   the smallest fold.

Because an empty fold always wins the placement comparison, every fold
is non-empty whenever ``n_folds <= n_units``.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

from ._errors import ConfigurationError
from .families import ModelFamily

logger = logging.getLogger(__name__)


def validate_dependency(dependency: np.ndarray, n_samples: int) -> np.ndarray:
    """Return the symmetrised integer dependency matrix.

    Raises:
        ConfigurationError: If the matrix is not ``(n, n)`` or holds
            labels other than 0, 1 and 2.
    """
    dep = np.asarray(dependency)
    if dep.shape != (n_samples, n_samples):
        raise ConfigurationError(
            f"Dependency matrix must be ({n_samples}, {n_samples}), got {dep.shape}."
        )
    if dep.dtype == bool:
        dep = dep.astype(int)
    if not np.issubdtype(dep.dtype, np.integer):
        if not (np.all(np.isfinite(dep)) and np.allclose(dep, np.round(dep))):
            raise ConfigurationError("Dependency matrix entries must be 0, 1 or 2.")
        dep = np.round(dep)
    dep = dep.astype(int)
    if not np.all(np.isin(dep, (0, 1, 2))):
        raise ConfigurationError("Dependency matrix entries must be 0, 1 or 2.")
    dep = np.maximum(dep, dep.T)
    np.fill_diagonal(dep, 0)
    return dep


def dependency_pairs(dependency: np.ndarray, label: int) -> np.ndarray:
    """Disjoint ``(m, 2)`` sample pairs carrying *label*.

    Pairs are read from the upper triangle in row-major order.  A
    sample already used by an earlier pair is not reused; the
    overlapping pair is skipped.
    """
    rows, cols = np.nonzero(np.triu(dependency == label, k=1))
    used: set[int] = set()
    pairs: list[tuple[int, int]] = []
    for i, j in zip(rows.tolist(), cols.tolist(), strict=True):
        if i in used or j in used:
            logger.debug("Skipping overlapping type-%d pair (%d, %d).", label, i, j)
            continue
        used.update((i, j))
        pairs.append((i, j))
    return np.array(pairs, dtype=np.intp).reshape(-1, 2)


def dependency_groups(dependency: np.ndarray) -> np.ndarray:
    """Connected-component label per sample of the dependency graph."""
    _, labels = connected_components(csr_matrix(dependency > 0), directed=False)
    return labels


def _units(n_samples: int, groups: np.ndarray | None) -> list[np.ndarray]:
    if groups is None:
        return [np.array([i], dtype=np.intp) for i in range(n_samples)]
    _, codes = np.unique(groups, return_inverse=True)
    return [np.flatnonzero(codes == c) for c in range(codes.max() + 1)]


def make_folds(
    y: np.ndarray,
    family: ModelFamily,
    n_folds: int,
    rng: np.random.Generator,
    groups: np.ndarray | None = None,
) -> list[np.ndarray]:
    """Partition ``range(len(y))`` into test folds.

    Args:
        y: Response in the family's canonical layout (used only for
            stratification labels).
        family: Active family; supplies ``stratify_labels``.
        n_folds: Number of folds; ``0`` means one fold per unit
            (leave-one-out, or leave-one-group-out with *groups*).
        rng: Random generator driving the shuffle.
        groups: Optional per-sample group labels; samples sharing a
            label are kept in the same fold.

    Returns:
        List of sorted index arrays, disjoint, covering every sample.

    Raises:
        ConfigurationError: If ``n_folds`` is negative, 1, or exceeds
            the number of assignable units.
    """
    n_samples = len(y)
    units = _units(n_samples, groups)

    if n_folds < 0 or n_folds == 1:
        raise ConfigurationError(
            f"Fold count {n_folds} is invalid; use 0 (leave-one-out) or >= 2."
        )
    if n_folds > len(units):
        raise ConfigurationError(
            f"Cannot build {n_folds} folds from {len(units)} assignable units."
        )
    if n_folds == 0:
        return [np.sort(u) for u in units]

    labels = family.stratify_labels(y)
    n_classes = int(labels.max()) + 1 if labels is not None else 1

    order = rng.permutation(len(units))
    grouped = [units[i] for i in order if len(units[i]) > 1]
    singles = [int(units[i][0]) for i in order if len(units[i]) == 1]

    assignment = np.full(n_samples, -1, dtype=np.intp)
    sizes = np.zeros(n_folds, dtype=np.intp)
    class_counts = np.zeros((n_folds, n_classes), dtype=np.intp)

    # Stable sort keeps the random order among equally sized units.
    for unit in sorted(grouped, key=len, reverse=True):
        k = int(np.argmin(sizes))
        assignment[unit] = k
        sizes[k] += len(unit)
        if labels is not None:
            np.add.at(class_counts[k], labels[unit], 1)

    if labels is None:
        for i in singles:
            k = int(np.argmin(sizes))
            assignment[i] = k
            sizes[k] += 1
    else:
        singles_arr = np.asarray(singles, dtype=np.intp)
        for c in range(n_classes):
            for i in singles_arr[labels[singles_arr] == c]:
                # Lexicographic (class count, fold size, index) minimum.
                k = int(np.lexsort((np.arange(n_folds), sizes, class_counts[:, c]))[0])
                assignment[i] = k
                sizes[k] += 1
                class_counts[k, c] += 1

    return [np.flatnonzero(assignment == k) for k in range(n_folds)]
