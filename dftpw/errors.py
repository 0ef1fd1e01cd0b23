"""Exceptions raised by the SCF machinery.

Three kinds of failure are distinguished:

- configuration errors (bad lattice, empty basis, too few bands, ...) are
  raised before any SCF iteration starts;
- numerical instabilities (NaN/Inf in a density or potential, a collapsed
  eigensolver block) abort the calculation immediately;
- non-convergence of the eigensolver or the SCF loop is *not* an exception,
  it is reported through the ``converged`` flag of the returned result.
"""

import jax.numpy as jnp


class ConfigurationError(ValueError):
    """Invalid input detected before the calculation starts."""


class NumericalInstabilityError(FloatingPointError):
    """A quantity became non-finite (or otherwise unusable) during a run.

    Attributes:
        quantity: Name of the offending quantity (e.g. "density").
        iteration: SCF iteration at which it was detected, if known.
    """

    def __init__(self, quantity: str, iteration: int | None = None, detail: str = ""):
        self.quantity = quantity
        self.iteration = iteration
        where = f" at SCF iteration {iteration}" if iteration is not None else ""
        msg = f"Numerical instability in {quantity}{where}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class SubspaceCollapseError(NumericalInstabilityError):
    """The eigensolver block lost rank below the number of requested bands."""

    def __init__(self, n_kept: int, n_wanted: int, iteration: int | None = None):
        self.n_kept = n_kept
        self.n_wanted = n_wanted
        super().__init__(
            "eigensolver subspace", iteration,
            f"only {n_kept} linearly independent vectors left for {n_wanted} bands",
        )


def check_finite(array, quantity: str, iteration: int | None = None):
    """Raise NumericalInstabilityError if ``array`` holds NaN or Inf.

    Returns the array unchanged so that the call can be chained.
    """
    if not bool(jnp.all(jnp.isfinite(array))):
        n_bad = int(jnp.sum(~jnp.isfinite(array)))
        raise NumericalInstabilityError(
            quantity, iteration, f"{n_bad} of {array.size} entries are NaN/Inf"
        )
    return array
