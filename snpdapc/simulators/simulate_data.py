from typing import Tuple

import numpy as np

from snpdapc.read_input.genotype_data import MISSING, GenotypeData


def simulate_structured_genotypes(
    n_pops: int = 3,
    n_per_pop: int = 20,
    n_markers: int = 500,
    divergence: float = 0.2,
    missing_rate: float = 0.0,
    seed: int | None = 999,
    prefix: str = "snpdapc",
    verbose: bool = True,
) -> Tuple[GenotypeData, np.ndarray]:
    """Simulate diploid SNP genotypes for discrete populations under the Balding-Nichols model.

    Each marker has an ancestral allele frequency ``p ~ Uniform(0.1, 0.9)``. Each population draws its own frequency from ``Beta(p (1 - F) / F, (1 - p)(1 - F) / F)``, where ``F = divergence`` plays the role of Fst, and individuals get ``Binomial(2, p_pop)`` dosages. Calls are then set missing independently with probability ``missing_rate``.

    Args:
        n_pops (int): Number of populations. Defaults to 3.
        n_per_pop (int): Individuals per population. Defaults to 20.
        n_markers (int): Number of SNPs. Defaults to 500.
        divergence (float): Population differentiation in (0, 1). Defaults to 0.2.
        missing_rate (float): Probability that a call is missing, in [0, 1). Defaults to 0.0.
        seed (int | None): Random seed. Defaults to 999.
        prefix (str): Prefix passed to the GenotypeData object.
        verbose (bool): Whether the GenotypeData object logs verbosely.

    Returns:
        Tuple[GenotypeData, np.ndarray]: Genotypes (samples ``Pop<i>_<j>``) and the true population (1..n_pops) of each individual.

    Raises:
        ValueError: If any argument is out of range.
    """
    if n_pops < 1 or n_per_pop < 1 or n_markers < 1:
        raise ValueError("n_pops, n_per_pop and n_markers must be positive integers.")
    if not 0.0 < divergence < 1.0:
        raise ValueError(f"divergence must be in (0, 1), but got: {divergence}")
    if not 0.0 <= missing_rate < 1.0:
        raise ValueError(f"missing_rate must be in [0, 1), but got: {missing_rate}")

    rng = np.random.default_rng(seed)

    ancestral = rng.uniform(0.1, 0.9, size=n_markers)
    shape = (1.0 - divergence) / divergence
    freqs = rng.beta(
        ancestral * shape, (1.0 - ancestral) * shape, size=(n_pops, n_markers)
    )

    labels = np.repeat(np.arange(1, n_pops + 1), n_per_pop)
    genotypes = rng.binomial(2, freqs[labels - 1]).astype(np.int8)

    if missing_rate > 0:
        genotypes[rng.random(genotypes.shape) < missing_rate] = MISSING

    samples = [f"Pop{p}_{i + 1}" for p in range(1, n_pops + 1) for i in range(n_per_pop)]
    markers = [f"SNP{j + 1}" for j in range(n_markers)]

    gd = GenotypeData(genotypes, samples=samples, markers=markers, prefix=prefix, verbose=verbose)
    return gd, labels
