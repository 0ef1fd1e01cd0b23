"""Electron densities from orbitals, initial guesses and local DOS."""

import jax.numpy as jnp
import numpy as np

from dftpw.constants import PI, FILLING


def compute_partial_density(basis, kpt, psi_k: jnp.ndarray, occ_k) -> jnp.ndarray:
    """Unweighted density of one k-point: sum_n f_n |psi_n(r)|^2 / Omega."""
    occ_k = jnp.asarray(occ_k)
    psi_r = basis.G_to_r(kpt, psi_k)  # (n_bands, n1, n2, n3)
    return jnp.einsum('n,nxyz->xyz', occ_k, jnp.abs(psi_r)**2) / basis.volume


def compute_density(basis, psi: list, occupation: list) -> jnp.ndarray:
    """Compute electron density from wavefunctions.

    rho(r) = sum_{k,n} w_k * f_{n,k} * |psi_{n,k}(r)|^2 / Omega

    With sum_G |c_G|^2 = 1 the IFFT normalization gives sum_r |psi(r)|^2 = N,
    so that integral rho dr = sum_k w_k sum_n f_nk = N_elec.

    Args:
        basis: PlaneWaveBasis.
        psi: Per-k (npw_k, n_bands) coefficient blocks.
        occupation: Per-k (n_bands,) occupations (0..2).

    Returns:
        (n1, n2, n3) real electron density.
    """
    rho = jnp.zeros(basis.fft_size)
    for kpt, psi_k, occ_k in zip(basis.kpoints, psi, occupation):
        rho = rho + kpt.weight * compute_partial_density(basis, kpt, psi_k, occ_k)
    return rho


def total_charge(basis, rho: jnp.ndarray) -> float:
    """Integral of rho over the unit cell."""
    return float(jnp.sum(rho) * basis.dvol)


def guess_density(basis) -> jnp.ndarray:
    """Generate initial guess for electron density.

    Uses superposition of atomic densities (approximated by Gaussians of
    width max(r_loc, 0.5)), summed over neighbouring periodic images and
    normalized to the number of electrons.

    Args:
        basis: PlaneWaveBasis.

    Returns:
        (n1, n2, n3) initial electron density.
    """
    model = basis.model
    lattice = model.lattice
    r_grid = basis.r_frac @ lattice.T  # Cartesian grid points
    tau_all = model.cartesian_positions

    rho = jnp.zeros(basis.fft_size)
    for ia, psp in enumerate(model.pseudopotentials):
        sigma = max(psp.rloc, 0.5)
        norm = psp.Zion * (1.0 / (2.0 * PI * sigma**2))**1.5
        for p1 in range(-1, 2):
            for p2 in range(-1, 2):
                for p3 in range(-1, 2):
                    shift = lattice @ jnp.array([p1, p2, p3], dtype=jnp.float64)
                    dr = r_grid - (tau_all[ia] + shift)
                    r2 = jnp.sum(dr**2, axis=-1)
                    rho = rho + norm * jnp.exp(-r2 / (2.0 * sigma**2))

    rho = jnp.maximum(rho, 1e-10)
    return rho * model.n_electrons / total_charge(basis, rho)


def compute_ldos(basis, eigenvalues: list, psi: list, fermi_level: float,
                 temperature: float | None = None) -> jnp.ndarray:
    """Local density of states at the Fermi level.

    ldos(r) = sum_{k,n} w_k * 2 * delta_T(eps_nk - eps_F) * |psi_nk(r)|^2 / Omega,
    with delta_T(e) = -f'((e - eps_F)/T) / T the smearing delta function.
    Zero at zero temperature.

    Args:
        basis: PlaneWaveBasis.
        eigenvalues: Per-k eigenvalues.
        psi: Per-k coefficient blocks.
        fermi_level: Fermi level in Hartree.
        temperature: Broadening of the delta function (default: the model
            temperature).

    Returns:
        (n1, n2, n3) local density of states.
    """
    model = basis.model
    if temperature is None:
        temperature = model.temperature
    if temperature <= 0:
        return jnp.zeros(basis.fft_size)
    ldos = jnp.zeros(basis.fft_size)
    for kpt, eps_k, psi_k in zip(basis.kpoints, eigenvalues, psi):
        x = (np.asarray(eps_k) - fermi_level) / temperature
        weights = -FILLING * np.asarray(model.smearing.occupation_derivative(x)) / temperature
        ldos = ldos + kpt.weight * compute_partial_density(basis, kpt, psi_k, weights)
    return ldos
