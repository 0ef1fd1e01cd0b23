"""Ewald summation for the ion-ion electrostatic energy.

Computes the Madelung energy for a periodic system of point charges:
    E_ii = (1/2) sum_{i,j,R}' Z_i * Z_j / |tau_i - tau_j - R|

The prime means exclude i=j when R=0.

The Ewald method splits this into short-range (real-space) and
long-range (reciprocal-space) contributions plus a self-energy correction
and the interaction with a compensating uniform background.
"""

import jax.numpy as jnp
import numpy as np
from jax.scipy.special import erfc

from dftpw.constants import PI, TWO_PI
from dftpw.lattice import reciprocal_lattice, cell_volume, fractional_to_cartesian

# Both sums are truncated where erfc / Gaussian factors drop below ~1e-16
_CUTOFF_ARG = 6.0


def _integer_box(bounds) -> np.ndarray:
    ranges = [np.arange(-b, b + 1) for b in bounds]
    n1, n2, n3 = np.meshgrid(*ranges, indexing='ij')
    return np.stack([n1.ravel(), n2.ravel(), n3.ravel()], axis=-1)


def ewald_energy(
    lattice: jnp.ndarray,
    positions: jnp.ndarray,
    charges: jnp.ndarray,
    eta: float | None = None,
) -> float:
    """Compute Ewald ion-ion energy.

    E_ewald = E_real + E_recip + E_self + E_background

    Args:
        lattice: (3, 3) lattice vectors (columns) in Bohr.
        positions: (natom, 3) FRACTIONAL positions.
        charges: (natom,) ionic charges (Z_ion).
        eta: Ewald splitting parameter. If None, chosen from the cell.

    Returns:
        Scalar Ewald energy in Hartree.
    """
    lattice = np.asarray(lattice, dtype=np.float64)
    charges = jnp.asarray(charges, dtype=jnp.float64)
    natom = len(charges)
    omega = float(cell_volume(lattice))
    recip = np.asarray(reciprocal_lattice(lattice))
    tau = jnp.asarray(fractional_to_cartesian(jnp.asarray(positions), lattice))

    if eta is None:
        # Rough balance between the two sums
        eta = float((natom * PI**3 / omega**2) ** (1.0 / 3.0))
        eta = max(eta, 0.1)
    sqrt_eta = np.sqrt(eta)

    # ========================================
    # Real-space sum
    # ========================================
    rcut = _CUTOFF_ARG / sqrt_eta
    tau_np = np.asarray(tau)
    max_sep = float(np.max(np.linalg.norm(tau_np[:, None, :] - tau_np[None, :, :], axis=-1)))
    # |n_i| = |b_i . R| / 2pi <= |b_i| |R| / 2pi
    nmax = np.ceil((rcut + max_sep) * np.linalg.norm(recip, axis=0) / TWO_PI).astype(int)
    ns = _integer_box(nmax)
    R_vecs = jnp.array(ns @ lattice.T)
    is_origin = jnp.array(np.all(ns == 0, axis=-1))

    e_real = 0.0
    for i in range(natom):
        for j in range(natom):
            d_all = tau[i] - tau[j] - R_vecs
            dists = jnp.linalg.norm(d_all, axis=-1)
            exclude = is_origin & (i == j)
            dists_safe = jnp.where(exclude, 1.0, dists)
            contrib = jnp.where(exclude | (dists > rcut), 0.0,
                                erfc(sqrt_eta * dists_safe) / dists_safe)
            e_real = e_real + charges[i] * charges[j] * jnp.sum(contrib)
    e_real = 0.5 * e_real

    # ========================================
    # Reciprocal-space sum
    # ========================================
    gcut = 2.0 * _CUTOFF_ARG * sqrt_eta
    mmax = np.ceil(gcut * np.linalg.norm(lattice, axis=0) / TWO_PI).astype(int)
    ms = _integer_box(mmax)
    ms = ms[~np.all(ms == 0, axis=-1)]
    G = jnp.array(ms @ recip.T)
    G2 = jnp.sum(G**2, axis=-1)
    S_G = jnp.sum(charges[:, None] * jnp.exp(-1j * (tau @ G.T)), axis=0)
    e_recip = TWO_PI / omega * jnp.sum(jnp.abs(S_G)**2 * jnp.exp(-G2 / (4.0 * eta)) / G2)

    # ========================================
    # Self-energy and background
    # ========================================
    e_self = -jnp.sqrt(eta / PI) * jnp.sum(charges**2)
    total_charge = jnp.sum(charges)
    e_background = -PI * total_charge**2 / (2.0 * omega * eta)

    return float(jnp.real(e_real + e_recip + e_self + e_background))
