"""Example: metallic hcp magnesium with PBE and Fermi-Dirac smearing.

The k-grid is derived from a maximal k-point spacing and the density is
mixed with the Kerker preconditioner, which damps the long-wavelength
charge sloshing typical of metals.
"""

import numpy as np

from dftpw import DFTCalculator, KerkerMixing, Model
from dftpw.constants import BOHR_TO_ANGSTROM

a, b, c = 3.01794, 5.22722, 9.77362
lattice = np.array([
    [-a, -a, 0.0],
    [-b, b, 0.0],
    [0.0, 0.0, -c],
])
model = Model(
    lattice=lattice,
    species=["Mg", "Mg"],
    positions=[[2/3, 1/3, 1/4], [1/3, 2/3, 3/4]],
    functionals=["gga_x_pbe", "gga_c_pbe"],
    temperature=0.01,
    smearing="fd",
)

calc = DFTCalculator(
    ecut=5.0,
    kspacing=0.945 * BOHR_TO_ANGSTROM,  # 0.945 1/Angstrom
    mixing=KerkerMixing(),
    damping=0.8,
)
print(f"k-point grid: {calc.build_basis(model).kgrid}")

result = calc.run(model)
calc.print_summary(result)
