"""Example: band energies of bulk silicon without exchange-correlation.

Runs an SCF on the diamond structure with only the Hartree and
pseudopotential terms, then diagonalizes the converged Hamiltonian for
ten bands at four irreducible k-points.
"""

import numpy as np

from dftpw import Model, PlaneWaveBasis, self_consistent_field
from dftpw.constants import HARTREE_TO_EV
from dftpw.eigensolver import diagonalize_all_kblocks
from dftpw.preconditioner import KineticPreconditioner

# Lattice constant 5.431 Angstrom, FCC lattice vectors as columns
a0 = 10.263141334305942
lattice = a0 / 2 * np.array([
    [0.0, 1.0, 1.0],
    [1.0, 0.0, 1.0],
    [1.0, 1.0, 0.0],
])
positions = [[1/8, 1/8, 1/8], [-1/8, -1/8, -1/8]]
model = Model(lattice=lattice, species=["Si", "Si"], positions=positions)

kcoords = [
    [0.0, 0.0, 0.0],
    [0.229166666666667, 0.229166666666667, 0.0],
    [0.479166666666667, -0.020833333333333, 0.0],
    [-0.104166666666667, 0.145833333333333, 0.395833333333333],
]
kweights = np.array([1, 8, 6, 12]) / 27
basis = PlaneWaveBasis(model, 5.0, kcoords, kweights)

result = self_consistent_field(basis, n_bands=8, tol=1e-8)

diag = diagonalize_all_kblocks(result.ham, 10, psi_guess=result.psi,
                               preconditioner=KineticPreconditioner(),
                               tol=1e-6, maxiter=200)

print()
print("  Band energies (Ha)")
for ik, eigs in enumerate(diag.eigenvalues):
    values = "  ".join(f"{e:8.5f}" for e in np.asarray(eigs))
    print(f"  k{ik + 1}: {values}")

gap = float(min(e[4] for e in diag.eigenvalues) - max(e[3] for e in diag.eigenvalues))
print(f"\n  Indirect gap on this k-set: {gap:.5f} Ha ({gap * HARTREE_TO_EV:.3f} eV)")
