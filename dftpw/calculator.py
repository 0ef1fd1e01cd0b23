"""High-level DFT calculator interface."""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from dftpw.basis import PlaneWaveBasis
from dftpw.constants import HARTREE_TO_EV
from dftpw.errors import ConfigurationError
from dftpw.mixing import get_mixing
from dftpw.model import Model
from dftpw.preconditioner import KineticPreconditioner
from dftpw.scf import SCFResult, self_consistent_field


@dataclass
class DFTCalculator:
    """High-level interface for plane-wave DFT calculations.

    Example usage:
        model = Model(lattice, ["Si", "Si"], positions, functionals=["lda_x", "lda_c_pw"])
        calc = DFTCalculator(ecut=10.0, kgrid=(4, 4, 4))
        result = calc.run(model)
        print(f"Total energy: {result.total_energy} Ha")
    """
    ecut: float = 10.0                          # Energy cutoff in Hartree
    kgrid: Optional[tuple] = None               # Monkhorst-Pack grid (None for gamma-only)
    kspacing: Optional[float] = None            # Maximal k spacing in 1/Bohr, instead of kgrid
    n_bands: Optional[int] = None               # Number of bands (None for auto)
    max_scf: int = 100                          # Max SCF iterations
    scf_tol: float = 1e-6                       # Density residual tolerance
    mixing: object = "ldos"                     # Mixing scheme or object
    damping: float = 0.8                        # Mixing damping
    anderson_m: int = 10                        # Anderson history depth
    preconditioner_alpha: float = 0.1           # Shift of the kinetic preconditioner
    use_symmetry: bool = True                   # Time-reversal folding of k-points
    n_workers: int = 1                          # Threads for k-point diagonalization
    verbose: bool = True                        # Print info

    def __post_init__(self):
        if not self.ecut > 0:
            raise ConfigurationError(f"ecut must be positive, got {self.ecut}")
        if self.kgrid is not None and self.kspacing is not None:
            raise ConfigurationError("Specify either kgrid or kspacing, not both")
        if self.n_workers < 1:
            raise ConfigurationError(f"n_workers must be at least 1, got {self.n_workers}")
        self.mixing = get_mixing(self.mixing)

    def build_basis(self, model: Model) -> PlaneWaveBasis:
        """Plane-wave basis for ``model`` with this calculator's settings."""
        return PlaneWaveBasis.from_kgrid(model, self.ecut, kgrid=self.kgrid,
                                         kspacing=self.kspacing,
                                         use_symmetry=self.use_symmetry)

    def run(self, model: Model) -> SCFResult:
        """Run a DFT calculation.

        Args:
            model: Physical model.

        Returns:
            SCFResult with all computed quantities.
        """
        basis = self.build_basis(model)
        return self_consistent_field(
            basis,
            n_bands=self.n_bands,
            tol=self.scf_tol,
            maxiter=self.max_scf,
            mixing=self.mixing,
            damping=self.damping,
            anderson_m=self.anderson_m,
            preconditioner=KineticPreconditioner(self.preconditioner_alpha),
            n_workers=self.n_workers,
            verbose=self.verbose,
        )

    @staticmethod
    def print_summary(result: SCFResult):
        """Print a summary of the calculation results."""
        print("\n" + "=" * 50)
        print("  Calculation Summary")
        print("=" * 50)
        print(f"  Converged: {result.converged}")
        print(f"  SCF iterations: {result.n_iter}")
        print(f"  Total energy: {result.total_energy:.10f} Ha")
        print(f"               {result.total_energy * HARTREE_TO_EV:.8f} eV")
        print(f"  Fermi energy: {result.fermi_level:.6f} Ha")
        print(f"               {result.fermi_level * HARTREE_TO_EV:.4f} eV")

        gap = band_gap(result)
        if gap is not None:
            print(f"  Band gap: {gap:.6f} Ha ({gap * HARTREE_TO_EV:.4f} eV)")
        print("=" * 50)


def band_gap(result: SCFResult) -> Optional[float]:
    """Gap between the highest occupied and lowest empty band, None for metals."""
    eigs = np.concatenate([np.asarray(e) for e in result.eigenvalues])
    occs = np.concatenate([np.asarray(o) for o in result.occupation])
    occupied = eigs[occs > 1e-6]
    empty = eigs[occs <= 1e-6]
    if len(occupied) == 0 or len(empty) == 0:
        return None
    gap = float(np.min(empty) - np.max(occupied))
    return gap if gap > 0 else None
