"""Density mixing schemes for SCF convergence.

Implements:
1. Simple (linear) mixing
2. Kerker-preconditioned mixing
3. LDOS (local density of states) preconditioned mixing for metals
4. Anderson acceleration on top of any of the above

Each mixing exposes precondition(basis, residual, info), an approximation
to the inverse dielectric operator applied to the density residual
rho_out - rho_in, and mix(basis, rho_in, rho_out, damping, info) returning
    rho_next = rho_in + damping * precondition(rho_out - rho_in).
"""

import jax.numpy as jnp
import numpy as np
from jax.scipy.sparse.linalg import gmres

from dftpw.errors import ConfigurationError
from dftpw.potentials import hartree_potential


class SimpleMixing:
    """Simple (linear) mixing, no preconditioning.

    rho_new = (1 - damping) * rho_in + damping * rho_out
    """
    name = "SimpleMixing"
    needs_ldos = False

    def precondition(self, basis, residual: jnp.ndarray, info: dict | None = None) -> jnp.ndarray:
        return residual

    def mix(self, basis, rho_in: jnp.ndarray, rho_out: jnp.ndarray,
            damping: float = 0.8, info: dict | None = None) -> jnp.ndarray:
        return rho_in + damping * self.precondition(basis, rho_out - rho_in, info)


class KerkerMixing(SimpleMixing):
    """Kerker preconditioner for density mixing.

    Suppresses long-wavelength charge sloshing in metallic systems.
    K(G) = |G|^2 / (|G|^2 + kTF^2), K(G=0) = 1.

    Reference: G. P. Kerker, Phys. Rev. B 23, 3082 (1981).
    """
    name = "KerkerMixing"

    def __init__(self, kTF: float = 0.8):
        """
        Args:
            kTF: Thomas-Fermi screening wavevector in 1/Bohr.
        """
        if not kTF > 0:
            raise ConfigurationError(f"kTF must be positive, got {kTF}")
        self.kTF = kTF

    def precondition(self, basis, residual, info=None):
        res_g = basis.fourier(residual)
        g2 = basis.G2
        kernel = jnp.where(g2 == 0.0, 1.0, g2 / (g2 + self.kTF**2))
        return basis.real(res_g * kernel)


class LdosMixing(SimpleMixing):
    """Mixing preconditioned by the RPA dielectric operator of the LDOS model.

    Solves (1 - chi0 v_c) x = R with
        chi0 dV = -ldos * dV + ldos * (int ldos dV) / (int ldos),
    v_c the Hartree kernel and ldos the local density of states at the Fermi
    level (passed in info["ldos"]). Without an LDOS (insulators, T=0) it
    reduces to SimpleMixing.

    At the model temperature the LDOS of early iterates jumps whenever a band
    crosses the Fermi level, so the SCF driver evaluates it at the raised
    temperature returned by mixing_temperature.

    Reference: M. Herbst, A. Levitt, J. Phys.: Condens. Matter 32, 205001 (2020).
    """
    name = "LdosMixing"
    needs_ldos = True

    def __init__(self, tol: float = 1e-6, maxiter: int = 20,
                 temperature_factor: float = 25.0, above_residual: float = 0.01,
                 temperature_max: float = 0.5):
        """
        Args:
            tol, maxiter: GMRES tolerance and Krylov subspace size.
            temperature_factor: Initial ratio of mixing to model temperature.
            above_residual: Density residual below which the model
                temperature is used.
            temperature_max: Upper bound of the mixing temperature in Hartree.
        """
        if temperature_factor < 1:
            raise ConfigurationError(
                f"temperature_factor must be >= 1, got {temperature_factor}"
            )
        if not above_residual > 0:
            raise ConfigurationError(f"above_residual must be positive, got {above_residual}")
        self.tol = tol
        self.maxiter = maxiter
        self.temperature_factor = temperature_factor
        self.above_residual = above_residual
        self.temperature_max = temperature_max
        self._first_residual = None

    def mixing_temperature(self, temperature: float, n_iter: int,
                           residual_norm: float) -> float:
        """Temperature at which the LDOS is evaluated in SCF iteration n_iter.

        The first iteration uses temperature_factor * T (capped at
        temperature_max). Later iterations interpolate log-linearly in the
        residual between that value at the first residual and T at
        above_residual.
        """
        if temperature <= 0:
            return 0.0
        if n_iter <= 1 or self._first_residual is None:
            self._first_residual = residual_norm
        t_high = max(temperature, min(self.temperature_factor * temperature,
                                      self.temperature_max))
        if residual_norm <= self.above_residual:
            return temperature
        if self._first_residual <= self.above_residual:
            return t_high
        s = (np.log(residual_norm) - np.log(self.above_residual)) / (
            np.log(self._first_residual) - np.log(self.above_residual))
        s = min(float(s), 1.0)
        return float(np.exp(np.log(temperature) + s * (np.log(t_high) - np.log(temperature))))

    def precondition(self, basis, residual, info=None):
        ldos = None if info is None else info.get("ldos")
        if ldos is None:
            return residual
        ldos_total = float(jnp.sum(ldos) * basis.dvol)
        if ldos_total < 1e-12:
            return residual

        shape = residual.shape

        def chi0(dv):
            dv_mean = jnp.sum(ldos * dv) * basis.dvol / ldos_total
            return -ldos * dv + ldos * dv_mean

        def dielectric(x_flat):
            x = x_flat.reshape(shape)
            return (x - chi0(hartree_potential(basis, x))).ravel()

        x, _ = gmres(dielectric, residual.ravel(), x0=residual.ravel(),
                     tol=self.tol, restart=self.maxiter, maxiter=1)
        return x.reshape(shape)


class AndersonAcceleration:
    """Anderson acceleration of the fixed-point map x -> x + alpha * P f(x).

    Keeps the last m iterates x_i and preconditioned residuals Pf_i, and
    extrapolates
        x_{n+1} = x_n + alpha Pf_n
                  + sum_i beta_i (x_i - x_n + alpha (Pf_i - Pf_n))
    with beta = argmin || Pf_n + sum_i beta_i (Pf_i - Pf_n) ||.

    Reference: D. G. Anderson, J. ACM 12, 547 (1965).
    """

    def __init__(self, m: int = 10):
        self.m = m
        self.iterates: list[np.ndarray] = []
        self.residuals: list[np.ndarray] = []

    def reset(self):
        """Clear history."""
        self.iterates = []
        self.residuals = []

    def __call__(self, x: jnp.ndarray, alpha: float, pf: jnp.ndarray) -> jnp.ndarray:
        shape = x.shape
        x_flat = np.asarray(x, dtype=np.float64).ravel()
        pf_flat = np.asarray(pf, dtype=np.float64).ravel()
        x_next = x_flat + alpha * pf_flat
        if self.m == 0:
            return jnp.array(x_next.reshape(shape))

        if self.iterates:
            M = np.stack(self.residuals, axis=1) - pf_flat[:, None]
            betas = -np.linalg.lstsq(M, pf_flat, rcond=None)[0]
            for beta, xi, pfi in zip(betas, self.iterates, self.residuals):
                x_next += beta * (xi - x_flat + alpha * (pfi - pf_flat))

        self.iterates.append(x_flat)
        self.residuals.append(pf_flat)
        if len(self.iterates) > self.m:
            self.iterates.pop(0)
            self.residuals.pop(0)
        return jnp.array(x_next.reshape(shape))


def get_mixing(mixing) -> SimpleMixing:
    """Resolve a mixing name ("simple", "kerker", "ldos"); objects pass through."""
    if not isinstance(mixing, str):
        return mixing
    key = mixing.lower().replace("mixing", "").replace("_", "")
    if key == "simple":
        return SimpleMixing()
    if key == "kerker":
        return KerkerMixing()
    if key == "ldos":
        return LdosMixing()
    raise ConfigurationError(f"Unknown mixing '{mixing}'")
