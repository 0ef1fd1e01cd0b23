"""Density-derived potentials: Hartree and exchange-correlation.

Densities and potentials live on the real-space FFT grid of a PlaneWaveBasis.
Fourier coefficients follow rho(G) = (1/N) sum_r rho(r) e^{-iGr}.
"""

import jax.numpy as jnp

from dftpw.constants import FOUR_PI
from dftpw.errors import check_finite
from dftpw.xc import xc_evaluate


def hartree_potential(basis, rho: jnp.ndarray) -> jnp.ndarray:
    """Solve the Poisson equation in reciprocal space.

    V_H(G) = 4*pi * rho(G) / |G|^2  for G != 0
    V_H(G=0) = 0  (compensating background)

    Args:
        basis: PlaneWaveBasis.
        rho: (n1, n2, n3) electron density.

    Returns:
        (n1, n2, n3) real Hartree potential.
    """
    rho_g = basis.fourier(rho)
    g2 = basis.G2
    g2_safe = jnp.where(g2 == 0.0, 1.0, g2)
    vh_g = jnp.where(g2 == 0.0, 0.0, FOUR_PI * rho_g / g2_safe)
    return basis.real(vh_g)


def hartree_energy(basis, rho: jnp.ndarray) -> float:
    """Hartree energy.

    E_H = (Omega/2) * sum_{G != 0} 4*pi * |rho(G)|^2 / |G|^2
    """
    rho_g = basis.fourier(rho)
    g2 = basis.G2
    g2_safe = jnp.where(g2 == 0.0, 1.0, g2)
    eh = 0.5 * basis.volume * FOUR_PI * jnp.sum(
        jnp.where(g2 == 0.0, 0.0, jnp.abs(rho_g)**2 / g2_safe)
    )
    return float(jnp.real(eh))


def density_gradient(basis, rho: jnp.ndarray) -> jnp.ndarray:
    """(3, n1, n2, n3) Cartesian gradient of a periodic field, computed via FFT."""
    rho_g = basis.fourier(rho)
    return jnp.stack([basis.real(1j * basis.G_cart[..., a] * rho_g) for a in range(3)])


def divergence(basis, vector_field: jnp.ndarray) -> jnp.ndarray:
    """Divergence of a periodic (3, n1, n2, n3) vector field, computed via FFT."""
    div_g = sum(1j * basis.G_cart[..., a] * basis.fourier(vector_field[a]) for a in range(3))
    return basis.real(div_g)


def xc_potential(basis, functionals, rho: jnp.ndarray,
                 iteration: int | None = None) -> tuple[float, jnp.ndarray]:
    """Exchange-correlation energy and potential.

    For GGA functionals the potential picks up the divergence term
        V_xc = de/drho - 2 div(de/dsigma grad rho).

    Args:
        basis: PlaneWaveBasis.
        functionals: Sequence of XcFunctional (empty: no XC).
        rho: (n1, n2, n3) electron density.
        iteration: SCF iteration, reported in NumericalInstabilityError.

    Returns:
        (E_xc, V_xc) with V_xc on the real-space grid.
    """
    if len(functionals) == 0:
        return 0.0, jnp.zeros(basis.fft_size)
    check_finite(rho, "density", iteration)

    needs_gradient = any(f.needs_gradient for f in functionals)
    if needs_gradient:
        grad_rho = density_gradient(basis, rho)
        sigma = jnp.sum(grad_rho**2, axis=0)
    else:
        grad_rho = None
        sigma = None

    e, vrho, vsigma = xc_evaluate(functionals, rho, sigma)
    vxc = vrho
    if needs_gradient:
        vxc = vxc - 2.0 * divergence(basis, vsigma[None] * grad_rho)

    e_xc = float(jnp.sum(e) * basis.dvol)
    check_finite(vxc, "XC potential", iteration)
    check_finite(jnp.asarray(e_xc), "XC energy", iteration)
    return e_xc, vxc
