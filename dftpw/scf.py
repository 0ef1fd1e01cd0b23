"""Self-consistent field (SCF) loop for Kohn-Sham DFT.

The SCF procedure:
1. Start with initial guess for electron density rho_in(r)
2. Construct the Hamiltonian H[rho_in] = T + V_loc + V_nl + V_H[rho_in] + V_xc[rho_in]
3. Solve Kohn-Sham equations for the lowest bands at every k-point
4. Compute occupations and the output density rho_out(r)
5. Stop if ||rho_out - rho_in|| < tol
6. Mix: rho_in <- Anderson(rho_in, damping * P^{-1}(rho_out - rho_in)), go to 2

The convergence criterion is the L2 norm of the density residual,
    ||rho_out - rho_in|| = sqrt(dvol * sum_r (rho_out - rho_in)^2).
"""

import warnings
from typing import Callable, NamedTuple, Optional

import jax.numpy as jnp
import numpy as np

from dftpw.constants import FILLING, HARTREE_TO_EV
from dftpw.density import compute_density, compute_ldos, guess_density, total_charge
from dftpw.eigensolver import diagonalize_all_kblocks
from dftpw.energies import compute_energies, print_energies
from dftpw.errors import ConfigurationError, check_finite
from dftpw.ewald import ewald_energy
from dftpw.hamiltonian import Hamiltonian, build_atomic_terms, build_hamiltonian
from dftpw.mixing import AndersonAcceleration, LdosMixing, get_mixing
from dftpw.occupation import compute_occupation
from dftpw.preconditioner import KineticPreconditioner


class SCFResult(NamedTuple):
    """Results of an SCF calculation."""
    converged: bool
    n_iter: int
    rho: jnp.ndarray            # (n1, n2, n3) final (output) density
    psi: list                   # per-k (npw_k, n_bands) orbitals
    eigenvalues: list           # per-k (n_bands,) eigenvalues
    occupation: list            # per-k (n_bands,) occupations
    fermi_level: float
    energies: dict              # energy terms and "total"
    ham: Hamiltonian            # Hamiltonian built from rho
    history: list               # per-iteration dicts (energy, residual, ...)
    n_bands_converge: int
    residual_norm: float

    @property
    def total_energy(self) -> float:
        return self.energies["total"]


def default_n_bands(model) -> int:
    """Default number of bands.

    Fixed filling: the occupied bands plus 4 empty ones.
    Smearing: max(8, 2 * n_filled), enough to capture partial occupations
    above the Fermi level.
    """
    if model.temperature > 0:
        return max(8, 2 * model.n_filled)
    return model.n_filled + 4


def default_n_bands_converge(model, n_bands: int) -> int:
    """Bands whose residuals must converge: the occupied ones at fixed
    filling, all of them with smearing."""
    if model.temperature > 0:
        return n_bands
    return min(n_bands, model.n_filled)


class ScfDefaultCallback:
    """Print one line per SCF iteration."""

    def __init__(self):
        self.prev_energy = None

    def __call__(self, info: dict):
        if info["n_iter"] == 1:
            print()
            print(f"  {'Iter':>4s}  {'Total Energy':>16s}  {'Delta E':>12s}  "
                  f"{'Density Change':>14s}  {'Diag':>5s}")
            print("  " + "-" * 59)
        energy = info["energies"]["total"]
        de = energy - self.prev_energy if self.prev_energy is not None else float("nan")
        self.prev_energy = energy
        print(f"  {info['n_iter']:4d}  {energy:16.10f}  {de:12.2e}  "
              f"{info['residual_norm']:14.2e}  {info['n_iter_diag']:5.1f}")


def _check_negative_density(basis, rho, iteration):
    negative = rho < 0
    if bool(jnp.any(negative)):
        n_neg = int(jnp.sum(negative))
        charge = float(jnp.sum(jnp.where(negative, rho, 0.0)) * basis.dvol)
        warnings.warn(
            f"Negative density at {n_neg} grid points after mixing in SCF iteration "
            f"{iteration} (integrated {charge:.3e})",
            RuntimeWarning,
        )


def self_consistent_field(
    basis,
    n_bands: Optional[int] = None,
    rho: Optional[jnp.ndarray] = None,
    psi: Optional[list] = None,
    tol: float = 1e-6,
    maxiter: int = 100,
    mixing=None,
    damping: float = 0.8,
    anderson_m: int = 10,
    preconditioner=None,
    eigensolver_maxiter: int = 100,
    n_workers: int = 1,
    callback: Optional[Callable] = None,
    verbose: bool = True,
    seed: int = 0,
) -> SCFResult:
    """Run the SCF loop.

    Args:
        basis: PlaneWaveBasis.
        n_bands: Number of bands per k-point (default: default_n_bands).
        rho: Initial density (default: superposition of atomic Gaussians).
        psi: Initial orbitals per k-point (default: random).
        tol: Tolerance on the density residual norm.
        maxiter: Maximum SCF iterations.
        mixing: SimpleMixing, KerkerMixing, LdosMixing or a name (default LdosMixing).
        damping: Damping of the mixing step, in (0, 1].
        anderson_m: Anderson history depth (0 disables acceleration).
        preconditioner: Eigensolver preconditioner (default KineticPreconditioner).
        eigensolver_maxiter: Maximum LOBPCG iterations per SCF step.
        n_workers: Threads used to diagonalize k-points concurrently.
        callback: Called with an info dict after every iteration.
        verbose: Print convergence info (installs ScfDefaultCallback).
        seed: Seed of the random initial orbitals.

    Returns:
        SCFResult; ``converged`` is False if maxiter was reached.

    Raises:
        ConfigurationError: invalid options, too few bands, odd electron count at T=0.
        NumericalInstabilityError: a density or potential became non-finite.
    """
    model = basis.model
    if n_bands is None:
        n_bands = default_n_bands(model)
    if n_bands < 1:
        raise ConfigurationError(f"n_bands must be positive, got {n_bands}")
    n_pairs = model.n_electrons / FILLING
    if model.temperature <= 0 and abs(n_pairs - round(n_pairs)) > 1e-8:
        raise ConfigurationError(
            f"Fixed filling needs an even electron count, got {model.n_electrons}; "
            "set a finite temperature"
        )
    if model.temperature <= 0 and n_bands < model.n_filled:
        raise ConfigurationError(
            f"{n_bands} bands cannot hold {model.n_electrons} electrons at fixed filling"
        )
    if model.temperature > 0 and FILLING * n_bands < model.n_electrons:
        raise ConfigurationError(f"{n_bands} bands cannot hold {model.n_electrons} electrons")
    if n_bands > min(k.npw for k in basis.kpoints):
        raise ConfigurationError(
            f"{n_bands} bands requested but the smallest k-point basis has "
            f"{min(k.npw for k in basis.kpoints)} plane waves"
        )
    if not 0 < damping <= 1:
        raise ConfigurationError(f"damping must be in (0, 1], got {damping}")
    if not tol > 0:
        raise ConfigurationError(f"tol must be positive, got {tol}")
    if maxiter < 1:
        raise ConfigurationError(f"maxiter must be at least 1, got {maxiter}")

    mixing = get_mixing(mixing if mixing is not None else LdosMixing())
    if preconditioner is None:
        preconditioner = KineticPreconditioner()
    if callback is None and verbose:
        callback = ScfDefaultCallback()
    n_bands_converge = default_n_bands_converge(model, n_bands)

    if verbose:
        print("=" * 60)
        print("  Plane-Wave DFT Calculation (JAX)")
        print("=" * 60)
        print(f"  System: {model.natom} atoms, {model.n_electrons:.0f} electrons")
        print(f"  Functionals: {', '.join(model.functionals) or 'none'}")
        print(f"  Ecut: {basis.ecut:.1f} Ha")
        print(f"  Cell volume: {model.volume:.4f} Bohr^3")
        print(f"  K-points: {basis.n_kpoints}")
        print(f"  Bands: {n_bands} ({model.n_filled} filled at T=0)")
        print(f"  Plane waves (max): {basis.max_npw}")
        print(f"  FFT grid: {basis.fft_size}")
        print(f"  Mixing: {mixing.name}, damping {damping}")

    atomic_terms = build_atomic_terms(basis)
    e_ewald = ewald_energy(model.lattice, model.positions, model.Z_vals)

    rho_in = guess_density(basis) if rho is None else jnp.asarray(rho, dtype=jnp.float64)
    check_finite(rho_in, "initial density")
    anderson = AndersonAcceleration(anderson_m)

    history = []
    diagtol = 1e-2
    converged = False
    n_iter = 0
    for n_iter in range(1, maxiter + 1):
        ham = build_hamiltonian(basis, rho_in, atomic_terms, iteration=n_iter)
        diag = diagonalize_all_kblocks(
            ham, n_bands, psi_guess=psi, preconditioner=preconditioner,
            tol=diagtol, maxiter=eigensolver_maxiter, n_conv_check=n_bands_converge,
            n_workers=n_workers, seed=seed,
        )
        psi = diag.X
        eigenvalues = diag.eigenvalues
        occupation, fermi_level = compute_occupation(
            basis.kweights, eigenvalues, model.n_electrons, model.temperature, model.smearing
        )
        rho_out = check_finite(compute_density(basis, psi, occupation), "density", n_iter)

        residual = rho_out - rho_in
        residual_norm = float(jnp.sqrt(jnp.sum(residual**2) * basis.dvol))
        energies = compute_energies(basis, psi, occupation, rho_out, eigenvalues, fermi_level,
                                    atomic_terms=atomic_terms, e_ewald=e_ewald)

        info = {
            "n_iter": n_iter,
            "energies": energies,
            "residual_norm": residual_norm,
            "diagtol": diagtol,
            "n_iter_diag": float(np.mean(diag.n_iter)),
            "diag_converged": diag.converged,
            "fermi_level": fermi_level,
        }
        history.append({k: v for k, v in info.items() if k != "energies"}
                       | {"energy": energies["total"]})
        if callback is not None:
            callback(info)

        if residual_norm < tol:
            converged = True
            break

        mix_info = {}
        if mixing.needs_ldos:
            t_mix = mixing.mixing_temperature(model.temperature, n_iter, residual_norm)
            mix_info["ldos"] = compute_ldos(basis, eigenvalues, psi, fermi_level,
                                            temperature=t_mix)
        preconditioned = mixing.precondition(basis, residual, mix_info)
        rho_next = anderson(rho_in, damping, preconditioned)
        check_finite(rho_next, "density", n_iter)
        _check_negative_density(basis, rho_next, n_iter)

        # Restore the electron count lost to rounding and extrapolation
        charge = total_charge(basis, rho_next)
        if charge > 0:
            rho_next = rho_next * model.n_electrons / charge

        diagtol = float(np.clip(residual_norm / 10.0, tol / 100.0, 1e-2))
        rho_in = rho_next

    ham = build_hamiltonian(basis, rho_out, atomic_terms)

    if verbose:
        print()
        if converged:
            print(f"  SCF converged in {n_iter} iterations!")
        else:
            print(f"  WARNING: SCF not converged after {maxiter} iterations")
        print_energies(energies)
        _print_eigenvalues(eigenvalues, occupation, basis.kweights, fermi_level)

    return SCFResult(
        converged=converged,
        n_iter=n_iter,
        rho=rho_out,
        psi=psi,
        eigenvalues=eigenvalues,
        occupation=occupation,
        fermi_level=fermi_level,
        energies=energies,
        ham=ham,
        history=history,
        n_bands_converge=n_bands_converge,
        residual_norm=residual_norm,
    )


def _print_eigenvalues(eigenvalues_all, occupations_all, kweights, fermi_energy):
    """Print eigenvalues."""
    print()
    print(f"  Fermi energy: {fermi_energy:.6f} Ha ({fermi_energy * HARTREE_TO_EV:.4f} eV)")
    print()
    for ik, eigs in enumerate(eigenvalues_all):
        if len(eigenvalues_all) > 1:
            print(f"  K-point {ik + 1} (weight={float(kweights[ik]):.4f}):")
        for ib, e in enumerate(np.array(eigs)):
            occ = float(occupations_all[ik][ib])
            marker = "*" if occ > 0.5 else " "
            print(f"    {marker} Band {ib + 1:3d}: {e:12.6f} Ha  ({e * HARTREE_TO_EV:10.4f} eV)  occ={occ:.4f}")
