"""Tests for the error taxonomy and input validation."""

import jax.numpy as jnp
import numpy as np
import pytest

from dftpw.basis import PlaneWaveBasis
from dftpw.errors import (ConfigurationError, NumericalInstabilityError,
                          SubspaceCollapseError, check_finite)
from dftpw.model import Model
from dftpw.pseudopotential import load_psp
from dftpw.xc import get_functional


def _make_h_model(**kwargs):
    return Model(lattice=jnp.eye(3) * 6.0, species=["H"], positions=[[0.0, 0.0, 0.0]],
                 **kwargs)


def test_hierarchy():
    assert issubclass(ConfigurationError, ValueError)
    assert issubclass(NumericalInstabilityError, FloatingPointError)
    assert issubclass(SubspaceCollapseError, NumericalInstabilityError)


def test_numerical_instability_message():
    err = NumericalInstabilityError("density", 3, "2 of 8 entries are NaN/Inf")
    assert err.quantity == "density"
    assert err.iteration == 3
    assert str(err) == "Numerical instability in density at SCF iteration 3: 2 of 8 entries are NaN/Inf"
    assert str(NumericalInstabilityError("potential")) == "Numerical instability in potential"


def test_subspace_collapse_attributes():
    err = SubspaceCollapseError(3, 5, 7)
    assert (err.n_kept, err.n_wanted, err.iteration) == (3, 5, 7)
    assert err.quantity == "eigensolver subspace"
    assert "3 linearly independent" in str(err)


def test_check_finite():
    x = jnp.arange(4.0)
    assert check_finite(x, "x") is x
    with pytest.raises(NumericalInstabilityError, match="1 of 4"):
        check_finite(x.at[2].set(jnp.inf), "x")
    with pytest.raises(NumericalInstabilityError) as excinfo:
        check_finite(jnp.array([jnp.nan, 1.0]), "potential", iteration=5)
    assert excinfo.value.quantity == "potential"
    assert excinfo.value.iteration == 5


@pytest.mark.parametrize("lattice", [
    np.zeros((3, 3)),
    np.eye(2),
    np.array([[1.0, 2.0, 3.0], [2.0, 4.0, 6.0], [0.0, 0.0, 1.0]]),
    np.diag([1.0, np.nan, 1.0]),
])
def test_invalid_lattice(lattice):
    with pytest.raises(ConfigurationError):
        Model(lattice=lattice, species=["H"], positions=[[0.0, 0.0, 0.0]])


@pytest.mark.parametrize("kwargs", [
    dict(temperature=-0.1),
    dict(n_electrons=0.0),
    dict(smearing="cold-ish"),
    dict(functionals=["lda_x", "not_a_functional"]),
    dict(pseudopotentials=["H", "H"]),
])
def test_invalid_model(kwargs):
    with pytest.raises(ConfigurationError):
        _make_h_model(**kwargs)


def test_species_position_mismatch():
    with pytest.raises(ConfigurationError):
        Model(lattice=jnp.eye(3) * 6.0, species=["H", "H"], positions=[[0.0, 0.0, 0.0]])
    with pytest.raises(ConfigurationError):
        Model(lattice=jnp.eye(3) * 6.0, species=["H"], positions=[[0.0, np.inf, 0.0]])


def test_unknown_pseudopotential():
    with pytest.raises(ConfigurationError, match="not available"):
        load_psp("Xx")
    with pytest.raises(ConfigurationError):
        get_functional("gga_x_unknown")


def test_invalid_basis():
    model = _make_h_model()
    with pytest.raises(ConfigurationError):
        PlaneWaveBasis(model, 0.0)
    with pytest.raises(ConfigurationError):
        PlaneWaveBasis(model, 3.0, [[0.0, 0.0, 0.0]], [0.5])
    with pytest.raises(ConfigurationError):
        PlaneWaveBasis.from_kgrid(model, 3.0, kgrid=(2, 2, 2), kspacing=0.2)
    with pytest.raises(ConfigurationError):
        PlaneWaveBasis.from_kgrid(model, 3.0, kgrid=(0, 1, 1))


def test_pbe_model_without_pbe_parameters():
    lattice = jnp.eye(3) * 6.0
    with pytest.raises(ConfigurationError, match="No PBE"):
        Model(lattice=lattice, species=["C"], positions=[[0.0, 0.0, 0.0]], functionals="pbe")
    model = Model(lattice=lattice, species=["C"], positions=[[0.0, 0.0, 0.0]],
                  functionals="pbe", pseudopotentials=["hgh/lda/c-q4"])
    assert model.pseudopotentials[0].functional == "lda"
