"""Preconditioners for the iterative eigensolver.

A preconditioner approximates the inverse of (H - epsilon) and is applied
to residual blocks of shape (npw, n).
"""

import jax.numpy as jnp

from dftpw.errors import ConfigurationError


class KineticPreconditioner:
    """Diagonal kinetic preconditioner.

    P^{-1} R = R / ((1/2)|k+G|^2 + alpha)

    The shift alpha keeps the G=0 component finite (at k=0 the kinetic
    energy vanishes there).
    """

    def __init__(self, alpha: float = 0.1):
        if not alpha > 0:
            raise ConfigurationError(f"Preconditioner shift must be positive, got {alpha}")
        self.alpha = alpha

    def apply(self, kpt, R: jnp.ndarray) -> jnp.ndarray:
        denom = kpt.kinetic + self.alpha
        if R.ndim == 1:
            return R / denom
        return R / denom[:, None]

    def for_kpoint(self, kpt):
        """Return a callable R -> P^{-1} R bound to one k-point."""
        return lambda R: self.apply(kpt, R)


class NoPreconditioner:
    """Identity preconditioner."""

    def apply(self, kpt, R: jnp.ndarray) -> jnp.ndarray:
        return R

    def for_kpoint(self, kpt):
        return lambda R: R
