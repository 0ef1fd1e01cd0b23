"""Exchange-correlation functionals.

Functionals are described by their energy per unit volume e(rho, sigma),
with sigma = |grad rho|^2. Potentials are obtained by automatic
differentiation:
    vrho = de/drho,  vsigma = de/dsigma.

Available identifiers (libxc naming):
    lda_x      Slater exchange
    lda_c_pz   Perdew-Zunger (1981) correlation
    lda_c_pw   Perdew-Wang (1992) correlation
    gga_x_pbe  PBE exchange
    gga_c_pbe  PBE correlation

References:
    J. P. Perdew, A. Zunger, Phys. Rev. B 23, 5048 (1981).
    J. P. Perdew, Y. Wang, Phys. Rev. B 45, 13244 (1992).
    J. P. Perdew, K. Burke, M. Ernzerhof, Phys. Rev. Lett. 77, 3865 (1996).
"""

from typing import Callable, NamedTuple

import jax
import jax.numpy as jnp
import numpy as np

from dftpw.constants import PI
from dftpw.errors import ConfigurationError

# Points with rho below this value carry neither energy nor potential
DENSITY_THRESHOLD = 1e-10


# ============================================================================
# LDA Exchange
# ============================================================================

def exchange_energy_density(rho: jnp.ndarray) -> jnp.ndarray:
    """LDA exchange energy density per particle epsilon_x(rho).

    epsilon_x = -(3/4) * (3*rho/pi)^(1/3)

    Args:
        rho: Electron density (positive values).

    Returns:
        Exchange energy density per particle.
    """
    rho_safe = jnp.maximum(rho, 1e-30)
    return -0.75 * (3.0 * rho_safe / PI) ** (1.0 / 3.0)


def exchange_potential(rho: jnp.ndarray) -> jnp.ndarray:
    """LDA exchange potential V_x = d(rho * epsilon_x)/d(rho) = (4/3) * epsilon_x."""
    rho_safe = jnp.maximum(rho, 1e-30)
    return -(3.0 / PI * rho_safe) ** (1.0 / 3.0)


# ============================================================================
# LDA Correlation: Perdew-Zunger parameterization
# ============================================================================

# PZ81 parameters for unpolarized (paramagnetic) case
_GAMMA_PZ = -0.1423
_BETA1_PZ = 1.0529
_BETA2_PZ = 0.3334
_A_PZ = 0.0311
_B_PZ = -0.0480
_C_PZ = 0.0020
_D_PZ = -0.0116


def _seitz_radius(rho):
    return (3.0 / (4.0 * PI * rho)) ** (1.0 / 3.0)


def correlation_energy_density(rho: jnp.ndarray) -> jnp.ndarray:
    """Perdew-Zunger LDA correlation energy density per particle.

    Two regimes based on r_s = (3/(4*pi*rho))^(1/3):
        r_s >= 1: epsilon_c = gamma / (1 + beta1*sqrt(r_s) + beta2*r_s)
        r_s < 1:  epsilon_c = A*ln(r_s) + B + C*r_s*ln(r_s) + D*r_s

    Args:
        rho: Electron density.

    Returns:
        Correlation energy density per particle.
    """
    rs = _seitz_radius(jnp.maximum(rho, 1e-30))

    # High-density regime (r_s < 1)
    ec_high = _A_PZ * jnp.log(rs) + _B_PZ + _C_PZ * rs * jnp.log(rs) + _D_PZ * rs

    # Low-density regime (r_s >= 1)
    sqrt_rs = jnp.sqrt(rs)
    ec_low = _GAMMA_PZ / (1.0 + _BETA1_PZ * sqrt_rs + _BETA2_PZ * rs)

    return jnp.where(rs < 1.0, ec_high, ec_low)


def correlation_potential(rho: jnp.ndarray) -> jnp.ndarray:
    """Perdew-Zunger LDA correlation potential.

    V_c = epsilon_c + rho * d(epsilon_c)/d(rho)
        = epsilon_c - (r_s/3) * d(epsilon_c)/d(r_s)
    """
    rs = _seitz_radius(jnp.maximum(rho, 1e-30))

    ec_high = _A_PZ * jnp.log(rs) + _B_PZ + _C_PZ * rs * jnp.log(rs) + _D_PZ * rs
    dec_drs_high = _A_PZ / rs + _C_PZ * (jnp.log(rs) + 1.0) + _D_PZ
    vc_high = ec_high - (rs / 3.0) * dec_drs_high

    sqrt_rs = jnp.sqrt(rs)
    denom = 1.0 + _BETA1_PZ * sqrt_rs + _BETA2_PZ * rs
    ec_low = _GAMMA_PZ / denom
    dec_drs_low = -_GAMMA_PZ * (_BETA1_PZ / (2.0 * sqrt_rs) + _BETA2_PZ) / denom**2
    vc_low = ec_low - (rs / 3.0) * dec_drs_low

    return jnp.where(rs < 1.0, vc_high, vc_low)


# ============================================================================
# LDA Correlation: Perdew-Wang parameterization (also the PBE reference)
# ============================================================================

_A_PW = 0.031091
_ALPHA1_PW = 0.21370
_BETA_PW = (7.5957, 3.5876, 1.6382, 0.49294)


def pw92_correlation_energy_density(rho: jnp.ndarray) -> jnp.ndarray:
    """Perdew-Wang (1992) correlation energy per particle, unpolarized.

    epsilon_c = -2A (1 + alpha1 r_s) ln(1 + 1 / (2A (b1 r_s^1/2 + b2 r_s
                + b3 r_s^3/2 + b4 r_s^2)))
    """
    rs = _seitz_radius(jnp.maximum(rho, 1e-30))
    sqrt_rs = jnp.sqrt(rs)
    b1, b2, b3, b4 = _BETA_PW
    q1 = 2.0 * _A_PW * (b1 * sqrt_rs + b2 * rs + b3 * rs * sqrt_rs + b4 * rs * rs)
    return -2.0 * _A_PW * (1.0 + _ALPHA1_PW * rs) * jnp.log1p(1.0 / q1)


# ============================================================================
# PBE
# ============================================================================

_PBE_KAPPA = 0.804
_PBE_MU = 0.2195149727645171
_PBE_BETA = 0.06672455060314922
_PBE_GAMMA = (1.0 - np.log(2.0)) / np.pi**2


def _pbe_exchange(rho, sigma):
    """PBE exchange energy per unit volume.

    e_x = e_x^LDA(rho) * F_x(s),  F_x(s) = 1 + kappa - kappa / (1 + mu s^2 / kappa)
    with s = |grad rho| / (2 k_F rho).
    """
    kf = (3.0 * PI**2 * rho) ** (1.0 / 3.0)
    s2 = sigma / (4.0 * kf**2 * rho**2)
    fx = 1.0 + _PBE_KAPPA - _PBE_KAPPA / (1.0 + _PBE_MU * s2 / _PBE_KAPPA)
    return rho * exchange_energy_density(rho) * fx


def _pbe_correlation(rho, sigma):
    """PBE correlation energy per unit volume.

    e_c = rho * (epsilon_c^PW92 + H(r_s, t)),
    H = gamma ln(1 + beta/gamma t^2 (1 + A t^2) / (1 + A t^2 + A^2 t^4)),
    A = beta/gamma / (exp(-epsilon_c/gamma) - 1),  t = |grad rho| / (2 k_s rho).
    """
    ec = pw92_correlation_energy_density(rho)
    kf = (3.0 * PI**2 * rho) ** (1.0 / 3.0)
    ks2 = 4.0 * kf / PI
    t2 = sigma / (4.0 * ks2 * rho**2)
    a = _PBE_BETA / _PBE_GAMMA / jnp.expm1(-ec / _PBE_GAMMA)
    at2 = a * t2
    num = 1.0 + at2
    den = 1.0 + at2 + at2**2
    h = _PBE_GAMMA * jnp.log1p(_PBE_BETA / _PBE_GAMMA * t2 * num / den)
    return rho * (ec + h)


# ============================================================================
# Functional registry
# ============================================================================

class XcFunctional(NamedTuple):
    """A single exchange or correlation functional.

    Attributes:
        identifier: libxc-style name, e.g. "gga_x_pbe".
        family: "lda" or "gga".
        energy: e(rho, sigma) -> energy per unit volume (pointwise).
    """
    identifier: str
    family: str
    energy: Callable

    @property
    def needs_gradient(self) -> bool:
        return self.family == "gga"


_FUNCTIONALS = {
    "lda_x": XcFunctional(
        "lda_x", "lda", lambda rho, sigma: rho * exchange_energy_density(rho)),
    "lda_c_pz": XcFunctional(
        "lda_c_pz", "lda", lambda rho, sigma: rho * correlation_energy_density(rho)),
    "lda_c_pw": XcFunctional(
        "lda_c_pw", "lda", lambda rho, sigma: rho * pw92_correlation_energy_density(rho)),
    "gga_x_pbe": XcFunctional("gga_x_pbe", "gga", _pbe_exchange),
    "gga_c_pbe": XcFunctional("gga_c_pbe", "gga", _pbe_correlation),
}

# Shorthands for common combinations
_ALIASES = {
    "lda": ("lda_x", "lda_c_pz"),
    "pz81": ("lda_x", "lda_c_pz"),
    "pw92": ("lda_x", "lda_c_pw"),
    "pbe": ("gga_x_pbe", "gga_c_pbe"),
}


def get_functional(identifier: str) -> XcFunctional:
    """Look up a functional by its libxc-style identifier."""
    key = identifier.lower()
    if key not in _FUNCTIONALS:
        raise ConfigurationError(
            f"Unknown XC functional '{identifier}'. Available: {sorted(_FUNCTIONALS)}"
        )
    return _FUNCTIONALS[key]


def resolve_functionals(functionals) -> tuple[XcFunctional, ...]:
    """Normalize functional identifiers to a tuple of XcFunctional.

    Accepts None or an empty sequence (no XC), an alias string ("lda", "pbe"),
    a single identifier or a sequence of identifiers / XcFunctional objects.
    """
    if functionals is None:
        return ()
    if isinstance(functionals, str):
        key = functionals.lower()
        names = _ALIASES.get(key, (key,))
        return tuple(get_functional(n) for n in names)
    resolved = []
    for f in functionals:
        resolved.append(f if isinstance(f, XcFunctional) else get_functional(f))
    return tuple(resolved)


def _total_energy_density(functionals, rho, sigma):
    mask = rho >= DENSITY_THRESHOLD
    rho_safe = jnp.where(mask, rho, 1.0)
    sigma_safe = jnp.where(mask, jnp.maximum(sigma, 0.0), 0.0)
    e = jnp.zeros_like(rho)
    for f in functionals:
        e = e + f.energy(rho_safe, sigma_safe)
    return jnp.where(mask, e, 0.0)


def xc_evaluate(functionals, rho: jnp.ndarray, sigma: jnp.ndarray | None = None):
    """Evaluate the summed energy density and its partial derivatives.

    Args:
        functionals: Sequence of XcFunctional.
        rho: Electron density on the real-space grid.
        sigma: |grad rho|^2 on the same grid (required for GGA functionals).

    Returns:
        (e, vrho, vsigma): energy per unit volume, de/drho and de/dsigma,
        each with the shape of rho. All three vanish where
        rho < DENSITY_THRESHOLD.
    """
    functionals = resolve_functionals(functionals)
    rho = jnp.asarray(rho, dtype=jnp.float64)
    if sigma is None:
        if any(f.needs_gradient for f in functionals):
            raise ConfigurationError("GGA functionals require sigma = |grad rho|^2")
        sigma = jnp.zeros_like(rho)

    def total(r, s):
        return jnp.sum(_total_energy_density(functionals, r, s))

    e = _total_energy_density(functionals, rho, sigma)
    # Pointwise functionals: the gradient of the sum is the pointwise derivative
    vrho, vsigma = jax.grad(total, argnums=(0, 1))(rho, sigma)
    return e, vrho, vsigma
