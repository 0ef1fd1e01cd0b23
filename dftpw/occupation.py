"""Occupation numbers and Fermi level.

At zero temperature bands are filled with FILLING electrons up to the
number of electrons (same number of bands at every k-point, insulators
only). At finite temperature the Fermi level is found by bisection on the
smeared electron count.
"""

import numpy as np

from dftpw.constants import FILLING
from dftpw.errors import ConfigurationError
from dftpw.smearing import get_smearing


def _electron_count(kweights, eigenvalues, fermi_level, temperature, smearing) -> float:
    total = 0.0
    for w, eps in zip(kweights, eigenvalues):
        x = (np.asarray(eps) - fermi_level) / temperature
        total += w * FILLING * float(np.sum(np.asarray(smearing.occupation(x))))
    return total


def compute_occupation(kweights, eigenvalues: list, n_electrons: float,
                       temperature: float = 0.0, smearing=None
                       ) -> tuple[list[np.ndarray], float]:
    """Compute occupation numbers and Fermi level.

    Args:
        kweights: (nk,) k-point weights summing to 1.
        eigenvalues: Per-k (n_bands,) eigenvalues, ascending.
        n_electrons: Number of electrons per unit cell.
        temperature: Smearing temperature in Hartree (0 for fixed filling).
        smearing: Smearing name or object (default FermiDirac).

    Returns:
        occupation: Per-k (n_bands,) occupations in [0, FILLING] (MP smearing
            may slightly leave this range), with
            sum_k w_k sum_n f_nk = n_electrons.
        fermi_level: Fermi level in Hartree.

    Raises:
        ConfigurationError: at T=0 if the electron count is not a multiple of
            FILLING or if there are too few bands; at T>0 if the bands cannot
            hold all electrons.
    """
    kweights = np.asarray(kweights, dtype=np.float64)
    eigenvalues = [np.asarray(e, dtype=np.float64) for e in eigenvalues]
    n_bands = min(len(e) for e in eigenvalues)

    if temperature <= 0.0:
        n_fill = n_electrons / FILLING
        if abs(n_fill - round(n_fill)) > 1e-8:
            raise ConfigurationError(
                f"Fixed filling needs an electron count divisible by {FILLING:g}, "
                f"got {n_electrons}; use a finite temperature instead"
            )
        n_fill = int(round(n_fill))
        if n_bands < n_fill:
            raise ConfigurationError(
                f"{n_bands} bands cannot hold {n_electrons} electrons at fixed filling"
            )
        occupation = []
        for eps in eigenvalues:
            occ = np.zeros(len(eps))
            occ[:n_fill] = FILLING
            occupation.append(occ)
        homo = max(float(eps[n_fill - 1]) for eps in eigenvalues) if n_fill > 0 else -np.inf
        if n_bands > n_fill:
            lumo = min(float(eps[n_fill]) for eps in eigenvalues)
            fermi_level = 0.5 * (homo + lumo) if n_fill > 0 else lumo
        else:
            fermi_level = homo
        return occupation, float(fermi_level)

    smearing = get_smearing(smearing)
    if FILLING * n_bands < n_electrons - 1e-10:
        raise ConfigurationError(
            f"{n_bands} bands cannot hold {n_electrons} electrons"
        )

    # Bisection for the Fermi level
    all_eigs = np.concatenate(eigenvalues)
    emin = float(np.min(all_eigs)) - 100.0 * temperature
    emax = float(np.max(all_eigs)) + 100.0 * temperature
    ef = 0.5 * (emin + emax)
    for _ in range(200):
        ef = 0.5 * (emin + emax)
        n_test = _electron_count(kweights, eigenvalues, ef, temperature, smearing)
        if abs(n_test - n_electrons) < 1e-13:
            break
        if n_test > n_electrons:
            emax = ef
        else:
            emin = ef

    occupation = []
    for eps in eigenvalues:
        x = (eps - ef) / temperature
        occupation.append(FILLING * np.asarray(smearing.occupation(x), dtype=np.float64))
    return occupation, float(ef)


def compute_entropy_energy(kweights, eigenvalues: list, fermi_level: float,
                           temperature: float, smearing=None) -> float:
    """Smearing contribution -T*S to the free energy (zero at T=0)."""
    if temperature <= 0.0:
        return 0.0
    smearing = get_smearing(smearing)
    entropy = 0.0
    for w, eps in zip(kweights, eigenvalues):
        x = (np.asarray(eps) - fermi_level) / temperature
        entropy += w * FILLING * float(np.sum(np.asarray(smearing.entropy(x))))
    return -temperature * entropy
