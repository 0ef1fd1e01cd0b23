"""K-point generation and symmetry utilities.

All k-points are returned in FRACTIONAL reciprocal coordinates; the
Cartesian vector is k_cart = kf @ B.T with B the reciprocal lattice (columns).
"""

import jax.numpy as jnp
import numpy as np

from dftpw.constants import TWO_PI
from dftpw.errors import ConfigurationError


def monkhorst_pack(nk: tuple[int, int, int],
                   shift: tuple[float, float, float] = (0.0, 0.0, 0.0)
                   ) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Generate a Monkhorst-Pack k-point grid.

    k_{n1,n2,n3} = (2*n_i - N_i - 1) / (2*N_i) + shift_i

    Reference: H. J. Monkhorst, J. D. Pack, Phys. Rev. B 13, 5188 (1976).

    Args:
        nk: (nk1, nk2, nk3) k-point grid dimensions.
        shift: (s1, s2, s3) optional shift in fractional reciprocal coordinates.

    Returns:
        kpoints: (nk_total, 3) fractional k-points.
        weights: (nk_total,) integration weights (sum to 1).
    """
    if len(nk) != 3 or any(int(n) < 1 for n in nk):
        raise ConfigurationError(f"k-point grid must have three positive entries, got {nk}")
    nk1, nk2, nk3 = (int(n) for n in nk)
    total = nk1 * nk2 * nk3

    f1 = (2.0 * np.arange(nk1) - nk1 + 1) / (2.0 * nk1) + shift[0]
    f2 = (2.0 * np.arange(nk2) - nk2 + 1) / (2.0 * nk2) + shift[1]
    f3 = (2.0 * np.arange(nk3) - nk3 + 1) / (2.0 * nk3) + shift[2]

    g1, g2, g3 = np.meshgrid(f1, f2, f3, indexing='ij')
    frac_kpts = np.stack([g1.ravel(), g2.ravel(), g3.ravel()], axis=-1)

    return jnp.array(frac_kpts), jnp.ones(total) / total


def gamma_point() -> tuple[jnp.ndarray, jnp.ndarray]:
    """Return just the Gamma point with weight 1."""
    return jnp.zeros((1, 3)), jnp.ones(1)


def kgrid_from_maximal_spacing(lattice: jnp.ndarray, spacing: float) -> tuple[int, int, int]:
    """Smallest k-grid whose spacing does not exceed ``spacing`` (1/Bohr).

    n_i = max(1, ceil(|b_i| / spacing)), b_i the reciprocal lattice vectors.

    Args:
        lattice: (3, 3) lattice vectors (columns), Bohr.
        spacing: Maximal distance between k-points in 1/Bohr.
    """
    if spacing <= 0:
        raise ConfigurationError(f"k-point spacing must be positive, got {spacing}")
    recip = TWO_PI * np.linalg.inv(np.asarray(lattice, dtype=np.float64)).T
    norms = np.linalg.norm(recip, axis=0)
    # Guard against ceil(2.0000000001) = 3 from round-off
    return tuple(int(max(1, np.ceil(n / spacing - 1e-8))) for n in norms)


def reduce_kpoints_time_reversal(kpoints: jnp.ndarray, weights: jnp.ndarray,
                                 tol: float = 1e-8
                                 ) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Fold k and -k together (time-reversal symmetry).

    The first member of each pair is kept and carries the summed weight;
    k-points equal to their own inverse up to a lattice vector stay single.

    Args:
        kpoints: (nk, 3) fractional k-points.
        weights: (nk,) weights.
        tol: Tolerance for comparing k-points.

    Returns:
        Reduced kpoints and weights.
    """
    frac = np.asarray(kpoints, dtype=np.float64)
    weights_np = np.asarray(weights, dtype=np.float64)

    # pair[i, j]: k_i + k_j is a reciprocal lattice vector
    ksum = frac[:, None, :] + frac[None, :, :]
    pair = np.all(np.abs(ksum - np.round(ksum)) < tol, axis=-1)

    owner = np.arange(len(frac))
    for i in range(len(frac)):
        if owner[i] != i:
            continue
        partners = np.nonzero(pair[i, i + 1:])[0] + i + 1
        free = partners[owner[partners] == partners]
        if len(free):
            owner[free[0]] = i

    kept = np.nonzero(owner == np.arange(len(frac)))[0]
    folded = np.bincount(owner, weights=weights_np, minlength=len(frac))
    return jnp.array(frac[kept]), jnp.array(folded[kept])


def check_kweights(weights, tol: float = 1e-8) -> np.ndarray:
    """Validate k-point weights: non-negative and summing to one."""
    w = np.asarray(weights, dtype=np.float64)
    if w.ndim != 1 or len(w) == 0:
        raise ConfigurationError("k-point weights must be a non-empty 1D array")
    if np.any(w < 0) or not np.all(np.isfinite(w)):
        raise ConfigurationError("k-point weights must be finite and non-negative")
    if abs(w.sum() - 1.0) > tol:
        raise ConfigurationError(f"k-point weights must sum to 1, got {w.sum():.12f}")
    return w
