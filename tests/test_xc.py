"""Tests for exchange-correlation functionals."""

import jax.numpy as jnp
import numpy as np
import pytest

from dftpw.xc import (
    exchange_energy_density, exchange_potential,
    correlation_energy_density, correlation_potential,
    pw92_correlation_energy_density, xc_evaluate,
    get_functional, resolve_functionals, DENSITY_THRESHOLD,
)
from dftpw.errors import ConfigurationError


def _rho_from_rs(rs):
    return 3.0 / (4.0 * np.pi * rs**3)


def test_exchange_energy_density_values():
    """Test exchange energy density against known values."""
    rho = jnp.array(_rho_from_rs(1.0))
    ex = exchange_energy_density(rho)
    expected = -0.75 * (3.0 * float(rho) / np.pi) ** (1.0 / 3.0)
    np.testing.assert_allclose(ex, expected, rtol=1e-10)


def test_exchange_potential_relation():
    """Test that V_x = (4/3) * epsilon_x."""
    rho = jnp.linspace(0.001, 1.0, 100)
    ex = exchange_energy_density(rho)
    vx = exchange_potential(rho)
    np.testing.assert_allclose(vx, 4.0 / 3.0 * ex, rtol=1e-10)


def test_correlation_continuity():
    """Test that PZ correlation and its potential are continuous at r_s = 1."""
    rho_low = jnp.array(_rho_from_rs(0.999))
    rho_high = jnp.array(_rho_from_rs(1.001))
    np.testing.assert_allclose(correlation_energy_density(rho_low),
                               correlation_energy_density(rho_high), atol=1e-4)
    np.testing.assert_allclose(correlation_potential(rho_low),
                               correlation_potential(rho_high), atol=1e-3)


def test_correlation_known_values():
    """Test PZ correlation against the low-density formula at r_s = 2."""
    ec = float(correlation_energy_density(jnp.array(_rho_from_rs(2.0))))
    expected = -0.1423 / (1.0 + 1.0529 * np.sqrt(2.0) + 0.3334 * 2.0)
    np.testing.assert_allclose(ec, expected, rtol=1e-6)


@pytest.mark.parametrize("rs", [0.5, 1.0, 2.0, 5.0])
def test_pw92_close_to_pz(rs):
    """The two LDA correlation fits agree to a few mHa."""
    rho = jnp.array(_rho_from_rs(rs))
    np.testing.assert_allclose(pw92_correlation_energy_density(rho),
                               correlation_energy_density(rho), atol=2e-3)


def test_autodiff_lda_potentials():
    """jax.grad of the LDA energies reproduces the analytic potentials."""
    rho = jnp.linspace(0.01, 2.0, 50)
    _, vx, _ = xc_evaluate(["lda_x"], rho)
    np.testing.assert_allclose(vx, exchange_potential(rho), rtol=1e-10)
    _, vc, _ = xc_evaluate(["lda_c_pz"], rho)
    np.testing.assert_allclose(vc, correlation_potential(rho), rtol=1e-8)


def test_xc_negative():
    """Test that XC energy density is negative for positive densities."""
    rho = jnp.linspace(0.001, 10.0, 100)
    e, _, _ = xc_evaluate("lda", rho)
    assert jnp.all(e < 0)


def test_density_threshold():
    """Points below the density threshold carry no energy and no potential."""
    rho = jnp.array([0.0, 0.1 * DENSITY_THRESHOLD, 0.5])
    sigma = jnp.array([0.0, 0.0, 0.01])
    e, vrho, vsigma = xc_evaluate("pbe", rho, sigma)
    np.testing.assert_allclose(e[:2], 0.0)
    np.testing.assert_allclose(vrho[:2], 0.0)
    np.testing.assert_allclose(vsigma[:2], 0.0)
    assert jnp.all(jnp.isfinite(vrho))
    assert float(e[2]) < 0


def test_pbe_reduces_to_lda():
    """For a uniform density PBE equals Slater exchange + PW92 correlation."""
    rho = jnp.linspace(0.01, 1.0, 20)
    sigma = jnp.zeros_like(rho)
    e_pbe, v_pbe, _ = xc_evaluate("pbe", rho, sigma)
    e_lda, v_lda, _ = xc_evaluate("pw92", rho)
    np.testing.assert_allclose(e_pbe, e_lda, rtol=1e-10)
    np.testing.assert_allclose(v_pbe, v_lda, rtol=1e-8)


def test_pbe_exchange_gradient_enhancement():
    """Gradients lower the PBE exchange energy (F_x > 1), so de/dsigma < 0."""
    rho = jnp.array([0.1, 0.2])
    sigma = jnp.array([0.01, 0.05])
    e_grad, _, vsigma = xc_evaluate(["gga_x_pbe"], rho, sigma)
    e_flat, _, _ = xc_evaluate(["gga_x_pbe"], rho, jnp.zeros(2))
    assert jnp.all(e_grad < e_flat)
    assert jnp.all(vsigma < 0)


def test_resolve_functionals():
    names = [f.identifier for f in resolve_functionals("pbe")]
    assert names == ["gga_x_pbe", "gga_c_pbe"]
    assert resolve_functionals(None) == ()
    assert resolve_functionals([]) == ()
    assert get_functional("LDA_X").identifier == "lda_x"
    assert get_functional("gga_c_pbe").needs_gradient


def test_unknown_functional():
    with pytest.raises(ConfigurationError):
        get_functional("mgga_x_scan")


def test_gga_requires_sigma():
    with pytest.raises(ConfigurationError):
        xc_evaluate("pbe", jnp.ones(3))
