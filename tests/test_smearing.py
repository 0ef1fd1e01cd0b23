"""Tests for smearing functions and occupations."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from dftpw.smearing import (FermiDirac, Gaussian, MarzariVanderbilt, MethfesselPaxton,
                            get_smearing)
from dftpw.occupation import compute_occupation, compute_entropy_energy
from dftpw.errors import ConfigurationError

ALL_SMEARINGS = [FermiDirac(), Gaussian(), MarzariVanderbilt(),
                 MethfesselPaxton(1), MethfesselPaxton(2)]


@pytest.mark.parametrize("smearing", ALL_SMEARINGS, ids=lambda s: s.name)
def test_occupation_limits(smearing):
    """f goes from 1 far below the Fermi level to 0 far above it."""
    f = smearing.occupation(jnp.array([-20.0, 20.0]))
    np.testing.assert_allclose(f, [1.0, 0.0], atol=1e-10)


@pytest.mark.parametrize("smearing", ALL_SMEARINGS, ids=lambda s: s.name)
def test_occupation_derivative(smearing):
    """occupation_derivative matches the automatic derivative of occupation."""
    x = jnp.linspace(-4.0, 4.0, 41)
    df = jax.vmap(jax.grad(lambda t: smearing.occupation(t)))(x)
    np.testing.assert_allclose(smearing.occupation_derivative(x), df, atol=1e-12)


@pytest.mark.parametrize("smearing", ALL_SMEARINGS, ids=lambda s: s.name)
def test_entropy_definition(smearing):
    """S'(x) = x f'(x), with S vanishing far from the Fermi level."""
    x = jnp.linspace(-4.0, 4.0, 41)
    dS = jax.vmap(jax.grad(lambda t: smearing.entropy(t)))(x)
    np.testing.assert_allclose(dS, x * smearing.occupation_derivative(x), atol=1e-10)
    np.testing.assert_allclose(smearing.entropy(jnp.array([-20.0, 20.0])), 0.0, atol=1e-10)


def test_fermi_dirac_half_filling():
    np.testing.assert_allclose(FermiDirac().occupation(0.0), 0.5)
    np.testing.assert_allclose(FermiDirac().entropy(0.0), np.log(2.0))


def test_mp0_is_gaussian():
    x = jnp.linspace(-3.0, 3.0, 13)
    np.testing.assert_allclose(MethfesselPaxton(0).occupation(x), Gaussian().occupation(x))


@pytest.mark.parametrize("name, cls", [
    ("fermi-dirac", FermiDirac), ("FD", FermiDirac), ("gaussian", Gaussian),
    ("cold", MarzariVanderbilt), ("mv", MarzariVanderbilt), ("mp2", MethfesselPaxton),
])
def test_get_smearing(name, cls):
    smearing = get_smearing(name)
    assert isinstance(smearing, cls)
    # Objects pass through unchanged
    assert get_smearing(smearing) is smearing


def test_get_smearing_default_and_unknown():
    assert isinstance(get_smearing(None), FermiDirac)
    assert get_smearing("mp3").order == 3
    with pytest.raises(ConfigurationError):
        get_smearing("lorentzian")
    with pytest.raises(ConfigurationError):
        get_smearing("mpx")


def test_occupation_insulator():
    """Test occupation for an insulating system."""
    eigs = [jnp.array([-1.0, -0.5, 0.0, 0.5, 1.0])]
    weights = jnp.array([1.0])

    occs, ef = compute_occupation(weights, eigs, 4.0)
    np.testing.assert_allclose(occs[0][:2], 2.0, atol=1e-10)
    np.testing.assert_allclose(occs[0][2:], 0.0, atol=1e-10)
    # Midway between HOMO and LUMO
    np.testing.assert_allclose(ef, -0.25, atol=1e-10)


def test_occupation_insulator_errors():
    eigs = [jnp.array([-1.0, 0.0])]
    with pytest.raises(ConfigurationError):
        compute_occupation(jnp.array([1.0]), eigs, 3.0)
    with pytest.raises(ConfigurationError):
        compute_occupation(jnp.array([1.0]), eigs, 6.0)


@pytest.mark.parametrize("smearing", ["fd", "gaussian", "mv", "mp1"])
def test_occupation_smeared_electron_count(smearing):
    """Smeared occupations reproduce the electron count across k-points."""
    eigs = [jnp.array([-1.0, -0.3, 0.1, 0.6]), jnp.array([-0.9, -0.1, 0.2, 0.9])]
    weights = jnp.array([0.25, 0.75])
    occs, ef = compute_occupation(weights, eigs, 3.0, temperature=0.05, smearing=smearing)
    total = sum(float(w) * float(np.sum(o)) for w, o in zip(weights, occs))
    np.testing.assert_allclose(total, 3.0, atol=1e-10)
    assert -0.3 < ef < 0.2


def test_occupation_smeared_too_few_bands():
    with pytest.raises(ConfigurationError):
        compute_occupation(jnp.array([1.0]), [jnp.array([0.0, 1.0])], 5.0,
                           temperature=0.01)


def test_entropy_energy():
    """-TS vanishes at T=0 and is negative for Fermi-Dirac smearing."""
    eigs = [jnp.array([-0.2, 0.0, 0.2])]
    weights = jnp.array([1.0])
    assert compute_entropy_energy(weights, eigs, 0.0, 0.0) == 0.0
    ts = compute_entropy_energy(weights, eigs, 0.0, 0.1, "fd")
    assert ts < 0
    # The band at the Fermi level alone contributes -T * 2 * ln 2
    assert ts <= -0.1 * 2.0 * np.log(2.0)
