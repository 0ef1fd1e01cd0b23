"""Tests for Ewald summation."""

import jax.numpy as jnp
import numpy as np
import pytest

from dftpw.ewald import ewald_energy

# Madelung constant of a simple cubic lattice of point charges in a
# compensating background: E = -xi q^2 / (2L)
_XI_SIMPLE_CUBIC = 2.837297479


def test_ewald_single_charge():
    """Single unit charge in a cubic box reproduces the Madelung energy."""
    a0 = 10.0
    a = jnp.eye(3) * a0
    positions = jnp.array([[0.0, 0.0, 0.0]])
    charges = jnp.array([1.0])

    e = ewald_energy(a, positions, charges)
    np.testing.assert_allclose(e, -_XI_SIMPLE_CUBIC / (2.0 * a0), rtol=1e-6)


def test_ewald_charge_scaling():
    """The energy is quadratic in the charge."""
    a = jnp.eye(3) * 8.0
    positions = jnp.array([[0.0, 0.0, 0.0]])
    e1 = ewald_energy(a, positions, jnp.array([1.0]))
    e3 = ewald_energy(a, positions, jnp.array([3.0]))
    np.testing.assert_allclose(e3, 9.0 * e1, rtol=1e-8)


def test_ewald_eta_independence():
    """The result does not depend on the splitting parameter."""
    a0 = 10.263141334305942
    a = a0 / 2 * jnp.array([[0.0, 1.0, 1.0],
                            [1.0, 0.0, 1.0],
                            [1.0, 1.0, 0.0]])
    positions = jnp.array([[1/8, 1/8, 1/8], [-1/8, -1/8, -1/8]])
    charges = jnp.array([4.0, 4.0])

    e_default = ewald_energy(a, positions, charges)
    e_small = ewald_energy(a, positions, charges, eta=0.3)
    e_large = ewald_energy(a, positions, charges, eta=1.5)
    assert e_default < 0
    np.testing.assert_allclose(e_small, e_default, rtol=1e-8)
    np.testing.assert_allclose(e_large, e_default, rtol=1e-8)


def test_ewald_translation_invariance():
    """Test that Ewald energy is invariant under rigid translations."""
    a = jnp.array([[8.0, 1.0, 0.0],
                   [0.0, 8.0, 0.0],
                   [0.0, 0.0, 9.0]])
    pos1 = jnp.array([[0.0, 0.0, 0.0], [0.5, 0.5, 0.5]])
    pos2 = pos1 + jnp.array([0.13, -0.27, 0.91])
    charges = jnp.array([1.0, 2.0])

    e1 = ewald_energy(a, pos1, charges)
    e2 = ewald_energy(a, pos2, charges)
    np.testing.assert_allclose(e1, e2, rtol=1e-8)


def test_ewald_supercell_extensive():
    """Doubling the cell along one axis doubles the energy."""
    a0 = 7.0
    cell = jnp.eye(3) * a0
    supercell = jnp.diag(jnp.array([2 * a0, a0, a0]))
    e_cell = ewald_energy(cell, jnp.array([[0.1, 0.2, 0.3]]), jnp.array([2.0]))
    e_super = ewald_energy(supercell, jnp.array([[0.05, 0.2, 0.3], [0.55, 0.2, 0.3]]),
                           jnp.array([2.0, 2.0]))
    np.testing.assert_allclose(e_super, 2.0 * e_cell, rtol=1e-8)
