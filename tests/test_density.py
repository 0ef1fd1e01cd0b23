"""Tests for densities and density-derived potentials."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from dftpw.basis import PlaneWaveBasis
from dftpw.density import compute_density, compute_ldos, guess_density, total_charge
from dftpw.eigensolver import random_orbitals
from dftpw.errors import NumericalInstabilityError
from dftpw.model import Model
from dftpw.potentials import density_gradient, divergence, xc_potential
from dftpw.xc import resolve_functionals


def _make_si_basis(kcoords=None, kweights=None, **model_kwargs):
    a0 = 10.263141334305942
    lattice = a0 / 2 * jnp.array([[0.0, 1.0, 1.0],
                                  [1.0, 0.0, 1.0],
                                  [1.0, 1.0, 0.0]])
    model = Model(lattice=lattice, species=["Si", "Si"],
                  positions=[[1/8, 1/8, 1/8], [-1/8, -1/8, -1/8]], **model_kwargs)
    return PlaneWaveBasis(model, 3.0, kcoords, kweights)


def test_initial_density_integral():
    """The atomic guess integrates to the number of electrons and is positive."""
    basis = _make_si_basis()
    rho = guess_density(basis)
    np.testing.assert_allclose(total_charge(basis, rho), 8.0, rtol=1e-12)
    assert jnp.all(rho > 0)


def test_density_electron_count():
    """int rho = sum_k w_k sum_n f_nk for orthonormal orbitals."""
    basis = _make_si_basis([[0.0, 0.0, 0.0], [0.25, 0.25, 0.0]], [0.25, 0.75])
    psi = [random_orbitals(kpt.npw, 4, seed=ik) for ik, kpt in enumerate(basis.kpoints)]
    occupation = [np.array([2.0, 2.0, 2.0, 2.0]), np.array([2.0, 2.0, 1.5, 0.5])]
    rho = compute_density(basis, psi, occupation)
    assert rho.shape == basis.fft_size
    assert jnp.all(rho >= -1e-14)
    np.testing.assert_allclose(total_charge(basis, rho), 0.25 * 8.0 + 0.75 * 6.0, rtol=1e-10)


def test_ldos_zero_temperature():
    basis = _make_si_basis()
    psi = [random_orbitals(basis.kpoints[0].npw, 4)]
    ldos = compute_ldos(basis, [jnp.array([-0.3, -0.1, 0.0, 0.2])], psi, 0.05)
    np.testing.assert_allclose(ldos, 0.0)


def test_ldos_finite_temperature():
    """For Fermi-Dirac the LDOS integrates to sum_n w 2 f(1-f) / T."""
    basis = _make_si_basis(temperature=0.05, smearing="fd")
    psi = [random_orbitals(basis.kpoints[0].npw, 3)]
    eigs = np.array([-0.3, 0.0, 0.04])
    ldos = compute_ldos(basis, [eigs], psi, 0.0)
    f = 1.0 / (1.0 + np.exp(eigs / 0.05))
    expected = np.sum(2.0 * f * (1.0 - f) / 0.05)
    np.testing.assert_allclose(float(jnp.sum(ldos) * basis.dvol), expected, rtol=1e-8)


def test_ldos_broadening_temperature():
    """An explicit temperature overrides the model one in the delta function."""
    basis = _make_si_basis(temperature=0.05, smearing="fd")
    psi = [random_orbitals(basis.kpoints[0].npw, 3)]
    eigs = np.array([-0.3, 0.0, 0.04])
    np.testing.assert_allclose(compute_ldos(basis, [eigs], psi, 0.0, temperature=0.05),
                               compute_ldos(basis, [eigs], psi, 0.0))
    broad = compute_ldos(basis, [eigs], psi, 0.0, temperature=0.5)
    f = 1.0 / (1.0 + np.exp(eigs / 0.5))
    np.testing.assert_allclose(float(jnp.sum(broad) * basis.dvol),
                               np.sum(2.0 * f * (1.0 - f) / 0.5), rtol=1e-8)
    np.testing.assert_allclose(compute_ldos(basis, [eigs], psi, 0.0, temperature=0.0), 0.0)


def test_gradient_divergence():
    """div(grad f) of a plane wave is -|G|^2 f."""
    basis = _make_si_basis()
    G = basis.G_cart[1, 2, 0]
    f = jnp.cos(2 * np.pi * (basis.r_frac[..., 0] + 2 * basis.r_frac[..., 1]))
    lap = divergence(basis, density_gradient(basis, f))
    np.testing.assert_allclose(lap, -float(G @ G) * f, atol=1e-9)


def test_xc_potential_is_functional_derivative():
    """dE_xc/drho(r) = V_xc(r) dvol, checked along a random direction."""
    basis = _make_si_basis(functionals="pbe")
    functionals = resolve_functionals("pbe")
    # Offset keeps every grid point well above the density threshold
    rho = guess_density(basis) + 0.01
    e0, vxc = xc_potential(basis, functionals, rho)
    assert e0 < 0

    direction = jax.random.normal(jax.random.PRNGKey(0), basis.fft_size)
    # Keep the perturbation smooth so that it lives on the grid
    direction = basis.real(basis.fourier(direction) * (basis.G2 < 4.0))
    h = 1e-5
    e_plus, _ = xc_potential(basis, functionals, rho + h * direction)
    e_minus, _ = xc_potential(basis, functionals, rho - h * direction)
    finite_difference = (e_plus - e_minus) / (2 * h)
    np.testing.assert_allclose(finite_difference,
                               float(jnp.sum(vxc * direction) * basis.dvol), rtol=1e-5)


def test_xc_potential_without_functionals():
    basis = _make_si_basis()
    e, v = xc_potential(basis, (), guess_density(basis))
    assert e == 0.0
    np.testing.assert_allclose(v, 0.0)


def test_xc_potential_nan_density():
    basis = _make_si_basis(functionals="lda")
    rho = guess_density(basis).at[0, 0, 0].set(jnp.nan)
    with pytest.raises(NumericalInstabilityError, match="iteration 3"):
        xc_potential(basis, basis.model.xc, rho, iteration=3)
