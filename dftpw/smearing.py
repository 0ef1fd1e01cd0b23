"""Smearing functions for fractional occupations.

All functions take the reduced energy x = (epsilon - epsilon_F) / T and
return values for a single spin-orbital (maximum occupation 1):

    occupation(x)             f(x), decreasing from 1 to 0
    occupation_derivative(x)  f'(x) = -delta(x)
    entropy(x)                S(x) = -int_{-inf}^{x} t delta(t) dt

The smearing contribution to the free energy is -T sum_k w_k sum_n 2 S(x_nk).

References:
    M. Methfessel, A. T. Paxton, Phys. Rev. B 40, 3616 (1989).
    N. Marzari, D. Vanderbilt, A. De Vita, M. C. Payne,
    Phys. Rev. Lett. 82, 3296 (1999).
"""

import math

import jax
import jax.numpy as jnp
from jax.scipy.special import erfc, xlogy

from dftpw.constants import PI
from dftpw.errors import ConfigurationError

_SQRT_PI = math.sqrt(math.pi)
_SQRT2 = math.sqrt(2.0)


class FermiDirac:
    """f(x) = 1 / (1 + exp(x))."""
    name = "FermiDirac"

    def occupation(self, x):
        return jax.nn.sigmoid(-jnp.asarray(x))

    def occupation_derivative(self, x):
        f = self.occupation(x)
        return -f * (1.0 - f)

    def entropy(self, x):
        f = self.occupation(x)
        return -(xlogy(f, f) + xlogy(1.0 - f, 1.0 - f))


class Gaussian:
    """f(x) = erfc(x) / 2."""
    name = "Gaussian"

    def occupation(self, x):
        return 0.5 * erfc(jnp.asarray(x))

    def occupation_derivative(self, x):
        x = jnp.asarray(x)
        return -jnp.exp(-x * x) / jnp.sqrt(PI)

    def entropy(self, x):
        x = jnp.asarray(x)
        return jnp.exp(-x * x) / (2.0 * jnp.sqrt(PI))


class MarzariVanderbilt:
    """Cold smearing, u = x + 1/sqrt(2):
    f(x) = erfc(u) / 2 + exp(-u^2) / sqrt(2 pi).
    """
    name = "MarzariVanderbilt"

    def occupation(self, x):
        u = jnp.asarray(x) + 1.0 / _SQRT2
        return 0.5 * erfc(u) + jnp.exp(-u * u) / math.sqrt(2.0 * math.pi)

    def occupation_derivative(self, x):
        x = jnp.asarray(x)
        u = x + 1.0 / _SQRT2
        return -jnp.exp(-u * u) * (2.0 + _SQRT2 * x) / _SQRT_PI

    def entropy(self, x):
        u = jnp.asarray(x) + 1.0 / _SQRT2
        return u * jnp.exp(-u * u) / math.sqrt(2.0 * math.pi)


def _hermite(n: int, x):
    """Physicists' Hermite polynomial H_n(x) by upward recursion."""
    h_prev = jnp.ones_like(x)
    if n == 0:
        return h_prev
    h = 2.0 * x
    for k in range(1, n):
        h_prev, h = h, 2.0 * x * h - 2.0 * k * h_prev
    return h


class MethfesselPaxton:
    """Methfessel-Paxton smearing of a given order.

    f(x) = erfc(x)/2 + sum_{n=1}^{N} A_n H_{2n-1}(x) exp(-x^2),
    A_n = (-1)^n / (n! 4^n sqrt(pi)).
    Order 0 coincides with Gaussian smearing.
    """

    def __init__(self, order: int = 1):
        if order < 0:
            raise ConfigurationError(f"Methfessel-Paxton order must be >= 0, got {order}")
        self.order = order
        self.name = f"MethfesselPaxton{order}"

    @staticmethod
    def _coefficient(n: int) -> float:
        return (-1) ** n / (math.factorial(n) * 4**n * _SQRT_PI)

    def occupation(self, x):
        x = jnp.asarray(x)
        gauss = jnp.exp(-x * x)
        f = 0.5 * erfc(x)
        for n in range(1, self.order + 1):
            f = f + self._coefficient(n) * _hermite(2 * n - 1, x) * gauss
        return f

    def occupation_derivative(self, x):
        x = jnp.asarray(x)
        gauss = jnp.exp(-x * x)
        delta = jnp.zeros_like(x)
        for n in range(self.order + 1):
            delta = delta + self._coefficient(n) * _hermite(2 * n, x) * gauss
        return -delta

    def entropy(self, x):
        x = jnp.asarray(x)
        n = self.order
        return 0.5 * self._coefficient(n) * _hermite(2 * n, x) * jnp.exp(-x * x)


def get_smearing(smearing) -> object:
    """Resolve a smearing name ("fermi-dirac", "gaussian", "mv", "mp2", ...).

    Smearing objects are passed through unchanged; None gives FermiDirac.
    """
    if smearing is None:
        return FermiDirac()
    if not isinstance(smearing, str):
        return smearing
    key = smearing.lower().replace("-", "").replace("_", "").replace(" ", "")
    if key in ("fermidirac", "fd"):
        return FermiDirac()
    if key == "gaussian":
        return Gaussian()
    if key in ("marzarivanderbilt", "mv", "cold"):
        return MarzariVanderbilt()
    if key.startswith("methfesselpaxton") or key.startswith("mp"):
        digits = key[len("methfesselpaxton"):] if key.startswith("methfesselpaxton") else key[2:]
        if digits == "":
            return MethfesselPaxton()
        if digits.isdigit():
            return MethfesselPaxton(int(digits))
    raise ConfigurationError(f"Unknown smearing '{smearing}'")
