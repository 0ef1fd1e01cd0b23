"""Tests for plane-wave basis set generation."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from dftpw.basis import PlaneWaveBasis, _next_fft_size, compute_fft_size
from dftpw.model import Model
from dftpw.errors import ConfigurationError


def _make_box_model(a0=10.0):
    return Model(lattice=jnp.eye(3) * a0, species=["He"], positions=[[0.5, 0.5, 0.5]])


def _make_si_model():
    a0 = 10.263141334305942
    lattice = a0 / 2 * jnp.array([[0.0, 1.0, 1.0],
                                  [1.0, 0.0, 1.0],
                                  [1.0, 1.0, 0.0]])
    return Model(lattice=lattice, species=["Si", "Si"],
                 positions=[[1/8, 1/8, 1/8], [-1/8, -1/8, -1/8]])


def test_next_fft_size():
    """Test FFT size selection."""
    assert _next_fft_size(1) == 1
    assert _next_fft_size(7) == 8
    assert _next_fft_size(11) == 12
    assert _next_fft_size(16) == 16
    assert _next_fft_size(17) == 18
    assert _next_fft_size(23) == 24


def test_fft_size_cubic():
    """2*sqrt(2*Ecut)*a/(2 pi) = 10.07 for a=10, Ecut=5, hence 2*11+1 -> 24."""
    assert compute_fft_size(jnp.eye(3) * 10.0, 5.0) == (24, 24, 24)
    basis = PlaneWaveBasis(_make_box_model(), 5.0)
    assert basis.fft_size == (24, 24, 24)
    np.testing.assert_allclose(basis.dvol * basis.n_grid, 1000.0)


def test_basis_cutoff():
    """All basis vectors satisfy |k+G|^2/2 <= Ecut and G=0 is present at Gamma."""
    basis = PlaneWaveBasis(_make_box_model(), 5.0)
    kpt = basis.kpoints[0]
    assert jnp.all(kpt.kinetic <= 5.0)
    assert jnp.any(kpt.kinetic == 0.0)
    np.testing.assert_allclose(kpt.kinetic, 0.5 * jnp.sum(kpt.kg_vectors**2, axis=-1))
    # Every G with |G|^2/2 <= Ecut is included: count lattice points in the sphere
    m = np.arange(-6, 7)
    m1, m2, m3 = np.meshgrid(m, m, m, indexing='ij')
    g2 = (2 * np.pi / 10.0)**2 * (m1**2 + m2**2 + m3**2)
    assert kpt.npw == int(np.sum(0.5 * g2 <= 5.0))


def test_basis_count_grows_with_cutoff():
    model = _make_box_model()
    assert PlaneWaveBasis(model, 5.0).max_npw > PlaneWaveBasis(model, 2.0).max_npw


def test_basis_deterministic():
    model = _make_si_model()
    kcoords = [[0.0, 0.0, 0.0], [0.25, 0.1, 0.0]]
    b1 = PlaneWaveBasis(model, 4.0, kcoords, [0.5, 0.5])
    b2 = PlaneWaveBasis(model, 4.0, kcoords, [0.5, 0.5])
    for k1, k2 in zip(b1.kpoints, b2.kpoints):
        np.testing.assert_array_equal(k1.miller, k2.miller)
    assert b1.kpoints[0].weight == 0.5


def test_pw_real_roundtrip():
    """Test plane-wave <-> real-space roundtrip, single vectors and blocks."""
    basis = PlaneWaveBasis(_make_si_model(), 3.0, [[0.1, 0.2, 0.3]], [1.0])
    kpt = basis.kpoints[0]
    key_re, key_im = jax.random.split(jax.random.PRNGKey(42))
    coeffs = (jax.random.normal(key_re, (kpt.npw, 3))
              + 1j * jax.random.normal(key_im, (kpt.npw, 3)))

    field = basis.G_to_r(kpt, coeffs)
    assert field.shape == (3,) + basis.fft_size
    np.testing.assert_allclose(basis.r_to_G(kpt, field), coeffs, atol=1e-10)

    single = basis.G_to_r(kpt, coeffs[:, 1])
    np.testing.assert_allclose(single, field[1], atol=1e-10)
    np.testing.assert_allclose(basis.r_to_G(kpt, single), coeffs[:, 1], atol=1e-10)


def test_orbital_normalization():
    """sum_r |psi(r)|^2 = N for a normalized coefficient vector."""
    basis = PlaneWaveBasis(_make_si_model(), 3.0)
    kpt = basis.kpoints[0]
    c = jax.random.normal(jax.random.PRNGKey(0), (kpt.npw,)) + 0j
    c = c / jnp.linalg.norm(c)
    psi_r = basis.G_to_r(kpt, c)
    np.testing.assert_allclose(jnp.sum(jnp.abs(psi_r)**2), basis.n_grid, rtol=1e-10)


def test_fourier_real_roundtrip():
    basis = PlaneWaveBasis(_make_si_model(), 3.0)
    field = jax.random.normal(jax.random.PRNGKey(1), basis.fft_size)
    np.testing.assert_allclose(basis.real(basis.fourier(field)), field, atol=1e-12)
    # The G=0 coefficient is the grid average
    np.testing.assert_allclose(basis.fourier(field)[0, 0, 0], jnp.mean(field), atol=1e-12)


def test_full_grid_vectors():
    basis = PlaneWaveBasis(_make_box_model(), 2.0)
    n1, n2, n3 = basis.fft_size
    assert basis.G_cart.shape == (n1, n2, n3, 3)
    np.testing.assert_allclose(basis.G_cart[0, 0, 0], 0.0, atol=1e-15)
    np.testing.assert_allclose(basis.G_cart[1, 0, 0], [2 * np.pi / 10.0, 0.0, 0.0])
    np.testing.assert_allclose(basis.r_frac[1, 0, 0], [1.0 / n1, 0.0, 0.0])


def test_from_kgrid_time_reversal():
    """A 2x2x2 unshifted grid folds into 4 pairs of k and -k."""
    model = _make_si_model()
    basis = PlaneWaveBasis.from_kgrid(model, 3.0, kgrid=(2, 2, 2))
    assert basis.n_kpoints == 4
    assert basis.kgrid == (2, 2, 2)
    np.testing.assert_allclose(np.sum(basis.kweights), 1.0)
    full = PlaneWaveBasis.from_kgrid(model, 3.0, kgrid=(2, 2, 2), use_symmetry=False)
    assert full.n_kpoints == 8


def test_configuration_errors():
    model = _make_box_model()
    with pytest.raises(ConfigurationError):
        PlaneWaveBasis(model, 0.0)
    with pytest.raises(ConfigurationError):
        PlaneWaveBasis(model, 5.0, [[0.0, 0.0, 0.0]], [0.5, 0.5])
    with pytest.raises(ConfigurationError, match="Empty"):
        PlaneWaveBasis(model, 1e-4, [[0.5, 0.0, 0.0]], [1.0])
    with pytest.raises(ConfigurationError, match="too small"):
        PlaneWaveBasis(model, 5.0, fft_size=(4, 4, 4))
    with pytest.raises(ConfigurationError):
        PlaneWaveBasis.from_kgrid(model, 5.0, kgrid=(2, 2, 2), kspacing=0.5)
