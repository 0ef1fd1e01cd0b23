"""Total energy and its components.

E_total = E_kinetic + E_local + E_nonlocal + E_H + E_xc + E_ewald
          + E_psp_correction - T*S

All terms are evaluated directly from the orbitals, occupations and the
density they produce (no double-counting expression).
"""

import jax.numpy as jnp

from dftpw.ewald import ewald_energy
from dftpw.hamiltonian import build_atomic_terms
from dftpw.occupation import compute_entropy_energy
from dftpw.potentials import hartree_energy, xc_potential
from dftpw.pseudopotential import eval_psp_energy_correction

ENERGY_TERMS = ("Kinetic", "AtomicLocal", "AtomicNonlocal", "Hartree", "Xc",
                "Ewald", "PspCorrection", "Entropy")


def psp_correction_energy(model) -> float:
    """Energy of the G=0 remainder of the local pseudopotentials."""
    return sum(eval_psp_energy_correction(psp, model.n_electrons)
               for psp in model.pseudopotentials) / model.volume


def compute_energies(basis, psi: list, occupation: list, rho: jnp.ndarray,
                     eigenvalues: list, fermi_level: float,
                     atomic_terms=None, e_ewald: float | None = None) -> dict[str, float]:
    """Compute the total energy and its components.

    Args:
        basis: PlaneWaveBasis.
        psi: Per-k (npw_k, n_bands) orbitals.
        occupation: Per-k (n_bands,) occupations.
        rho: Density built from psi and occupation.
        eigenvalues: Per-k eigenvalues (for the smearing entropy).
        fermi_level: Fermi level.
        atomic_terms: Precomputed AtomicTerms (built if None).
        e_ewald: Precomputed Ewald energy (computed if None).

    Returns:
        Dict with the ENERGY_TERMS in order, followed by "total".
    """
    model = basis.model
    if atomic_terms is None:
        atomic_terms = build_atomic_terms(basis)

    e_kin = 0.0
    e_nl = 0.0
    for kpt, psi_k, occ_k, nl_term in zip(basis.kpoints, psi, occupation,
                                          atomic_terms.nonlocal_terms):
        occ_k = jnp.asarray(occ_k)
        band_kin = jnp.sum(kpt.kinetic[:, None] * jnp.abs(psi_k)**2, axis=0)
        e_kin += kpt.weight * float(jnp.sum(occ_k * band_kin))
        band_nl = jnp.real(jnp.sum(psi_k.conj() * nl_term.apply(psi_k), axis=0))
        e_nl += kpt.weight * float(jnp.sum(occ_k * band_nl))

    e_loc = float(jnp.sum(atomic_terms.local_potential * rho) * basis.dvol)
    e_xc, _ = xc_potential(basis, model.xc, rho)
    if e_ewald is None:
        e_ewald = ewald_energy(model.lattice, model.positions, model.Z_vals)

    energies = {
        "Kinetic": e_kin,
        "AtomicLocal": e_loc,
        "AtomicNonlocal": e_nl,
        "Hartree": hartree_energy(basis, rho),
        "Xc": e_xc,
        "Ewald": float(e_ewald),
        "PspCorrection": psp_correction_energy(model),
        "Entropy": compute_entropy_energy(basis.kweights, eigenvalues, fermi_level,
                                          model.temperature, model.smearing),
    }
    energies["total"] = sum(energies[name] for name in ENERGY_TERMS)
    return energies


def print_energies(energies: dict):
    """Print energy breakdown."""
    print()
    print("  Energy breakdown (Ha):")
    for name in ENERGY_TERMS:
        print(f"    {name + ':':16s} {energies[name]:16.10f}")
    print("    " + "-" * 33)
    print(f"    {'total:':16s} {energies['total']:16.10f}")
