import multiprocessing as mp
from typing import Hashable, Sequence, Tuple

import numpy as np


def derive_seed(seed: int, *keys: int) -> int:
    """Derive an independent 32-bit seed for one randomized trial.

    The seed depends only on the global seed and the trial coordinates (e.g. ``(k, start)`` or ``(replicate,)``), never on execution order, so results do not change with the number of workers.

    Args:
        seed (int): Global, non-negative random seed.
        *keys (int): Non-negative integers identifying the trial.

    Returns:
        int: Seed suitable for ``np.random.default_rng`` or scikit-learn's ``random_state``.
    """
    ss = np.random.SeedSequence([int(seed), *[int(k) for k in keys]])
    return int(ss.generate_state(1, dtype=np.uint32)[0])


def resolve_n_jobs(n_jobs: int) -> int:
    """Translate an ``n_jobs`` argument into a worker count.

    Args:
        n_jobs (int): -1 for all CPUs, otherwise a positive integer.

    Returns:
        int: Number of worker processes.

    Raises:
        ValueError: If ``n_jobs`` is 0 or less than -1.
    """
    if n_jobs == 0 or n_jobs < -1:
        raise ValueError(f"n_jobs must be -1 or a positive integer, but got: {n_jobs}")
    return mp.cpu_count() if n_jobs == -1 else n_jobs


def pretty_breaks(upper: int, n: int = 10) -> np.ndarray:
    """Integer breakpoints spanning ``1..upper``, following R's ``pretty`` heuristic.

    Args:
        upper (int): Largest value of the range.
        n (int): Desired number of intervals.

    Returns:
        np.ndarray: Sorted unique integer breakpoints, possibly including 0.
    """
    lo, hi = 1.0, float(upper)
    dx = hi - lo
    cell = dx / n if dx > 0 else abs(lo)

    h, h5 = 1.5, 0.5 + 1.5 * 1.5
    base = 10.0 ** np.floor(np.log10(cell))
    unit = base
    if 2 * base - cell < h * (cell - unit):
        unit = 2 * base
        if 5 * base - cell < h5 * (cell - unit):
            unit = 5 * base
            if 10 * base - cell < h * (cell - unit):
                unit = 10 * base

    ns = np.floor(lo / unit + 1e-7)
    nu = np.ceil(hi / unit - 1e-7)
    breaks = np.arange(ns, nu + 1) * unit
    return np.unique(np.round(breaks).astype(int))


def relabel_by_first_appearance(labels: Sequence[Hashable]) -> Tuple[np.ndarray, list]:
    """Renumber labels 1..K in order of first appearance.

    Args:
        labels (Sequence[Hashable]): Arbitrary cluster labels, one per individual.

    Returns:
        Tuple[np.ndarray, list]: The renumbered integer labels and the original labels in their new order.
    """
    mapping = {}
    for lab in labels:
        if lab not in mapping:
            mapping[lab] = len(mapping) + 1

    new = np.array([mapping[lab] for lab in labels], dtype=int)
    return new, list(mapping.keys())
