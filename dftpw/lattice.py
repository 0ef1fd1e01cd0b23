"""Lattice and reciprocal space utilities.

Lattice vectors are stored as the COLUMNS of a 3x3 matrix.
"""

import jax.numpy as jnp
import numpy as np

from dftpw.constants import TWO_PI
from dftpw.errors import ConfigurationError


def reciprocal_lattice(lattice: jnp.ndarray) -> jnp.ndarray:
    """Compute reciprocal lattice vectors from real-space lattice vectors.

    Given lattice vectors as columns of A, computes B such that
    a_i . b_j = 2*pi*delta_ij, i.e. B = 2*pi * A^{-T}.

    Args:
        lattice: (3, 3) array of real-space lattice vectors (columns).

    Returns:
        (3, 3) array of reciprocal lattice vectors (columns).
    """
    return TWO_PI * jnp.linalg.inv(lattice).T


def cell_volume(lattice: jnp.ndarray) -> jnp.ndarray:
    """Compute unit cell volume from lattice vectors.

    Args:
        lattice: (3, 3) array of lattice vectors (columns).

    Returns:
        Scalar cell volume.
    """
    return jnp.abs(jnp.linalg.det(lattice))


def metric_tensor(lattice: jnp.ndarray) -> jnp.ndarray:
    """Compute the metric tensor g_ij = a_i . a_j."""
    return lattice.T @ lattice


def fractional_to_cartesian(frac_coords: jnp.ndarray, lattice: jnp.ndarray) -> jnp.ndarray:
    """Convert fractional coordinates to Cartesian.

    Args:
        frac_coords: (..., 3) fractional coordinates.
        lattice: (3, 3) lattice vectors (columns).

    Returns:
        (..., 3) Cartesian coordinates.
    """
    return frac_coords @ lattice.T


def cartesian_to_fractional(cart_coords: jnp.ndarray, lattice: jnp.ndarray) -> jnp.ndarray:
    """Convert Cartesian coordinates to fractional.

    Args:
        cart_coords: (..., 3) Cartesian coordinates.
        lattice: (3, 3) lattice vectors (columns).

    Returns:
        (..., 3) fractional coordinates.
    """
    return cart_coords @ jnp.linalg.inv(lattice).T


def check_lattice(lattice) -> jnp.ndarray:
    """Validate a lattice and return it as a float64 array.

    Raises:
        ConfigurationError: if the matrix is not 3x3, not finite or singular.
    """
    lattice_np = np.asarray(lattice, dtype=np.float64)
    if lattice_np.shape != (3, 3):
        raise ConfigurationError(f"Lattice must be a 3x3 matrix, got shape {lattice_np.shape}")
    if not np.all(np.isfinite(lattice_np)):
        raise ConfigurationError("Lattice contains non-finite entries")
    if abs(np.linalg.det(lattice_np)) < 1e-10:
        raise ConfigurationError("Lattice vectors are linearly dependent (zero cell volume)")
    return jnp.array(lattice_np)
