"""
Plane-wave pseudopotential density functional theory for solids in JAX.

This package implements a self-consistent Kohn-Sham DFT solver using:
- Plane-wave basis set expansion with per-k-point basis sets
- Norm-conserving Hartwigsen-Goedecker-Hutter (HGH) pseudopotentials
- LDA and GGA-PBE exchange-correlation, derivatives from jax.grad
- Monkhorst-Pack k-point sampling with time-reversal folding
- LOBPCG iterative diagonalization
- Simple, Kerker and LDOS density mixing with Anderson acceleration
- Fermi-Dirac, Gaussian, Marzari-Vanderbilt and Methfessel-Paxton smearing
- Ewald summation for ion-ion interactions
"""

import jax

jax.config.update("jax_enable_x64", True)

from dftpw.basis import PlaneWaveBasis
from dftpw.calculator import DFTCalculator
from dftpw.errors import ConfigurationError, NumericalInstabilityError, SubspaceCollapseError
from dftpw.mixing import KerkerMixing, LdosMixing, SimpleMixing
from dftpw.model import Model
from dftpw.scf import SCFResult, self_consistent_field

__version__ = "0.1.0"
__all__ = [
    "Model",
    "PlaneWaveBasis",
    "self_consistent_field",
    "SCFResult",
    "DFTCalculator",
    "SimpleMixing",
    "KerkerMixing",
    "LdosMixing",
    "ConfigurationError",
    "NumericalInstabilityError",
    "SubspaceCollapseError",
]
