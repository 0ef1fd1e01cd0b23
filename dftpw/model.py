"""Physical model: crystal structure, pseudopotentials, functionals, smearing."""

from dataclasses import dataclass, field
from typing import Optional

import jax.numpy as jnp
import numpy as np

from dftpw.constants import ANGSTROM_TO_BOHR, FILLING
from dftpw.errors import ConfigurationError
from dftpw.lattice import (reciprocal_lattice, cell_volume, fractional_to_cartesian,
                           check_lattice)
from dftpw.pseudopotential import PspHgh, load_psp
from dftpw.smearing import get_smearing
from dftpw.xc import resolve_functionals


@dataclass
class Model:
    """A periodic system together with the physics used to describe it.

    All quantities are in atomic units (Bohr, Hartree).

    Attributes:
        lattice: (3, 3) real-space lattice vectors as COLUMNS.
        species: Element symbol per atom.
        positions: (natom, 3) fractional atomic positions.
        pseudopotentials: One PspHgh per atom; defaults to load_psp(symbol).
            Strings are resolved through load_psp.
        functionals: XC functional identifiers; empty means no XC term.
        temperature: Smearing temperature (0 = fixed integer filling).
        smearing: Smearing name or object, used when temperature > 0.
        n_electrons: Number of valence electrons; defaults to sum of Zion.
    """
    lattice: jnp.ndarray
    species: list[str]
    positions: jnp.ndarray
    pseudopotentials: Optional[list] = None
    functionals: tuple = ()
    temperature: float = 0.0
    smearing: object = None
    n_electrons: Optional[float] = None
    xc: tuple = field(default=(), init=False, repr=False)

    def __post_init__(self):
        self.lattice = check_lattice(self.lattice)
        self.species = list(self.species)
        positions = np.asarray(self.positions, dtype=np.float64).reshape(-1, 3)
        if len(positions) != len(self.species):
            raise ConfigurationError(
                f"{len(self.species)} species given for {len(positions)} positions"
            )
        if not np.all(np.isfinite(positions)):
            raise ConfigurationError("Atomic positions contain non-finite entries")
        self.positions = jnp.array(positions)

        self.xc = resolve_functionals(self.functionals)
        self.functionals = tuple(f.identifier for f in self.xc)

        if self.pseudopotentials is None:
            # GGA-PBE models default to the GTH-PBE parameter set
            family = "pbe" if any(f.endswith("pbe") for f in self.functionals) else None
            self.pseudopotentials = [load_psp(s, functional=family) for s in self.species]
        else:
            psps = []
            for p in self.pseudopotentials:
                psps.append(p if isinstance(p, PspHgh) else load_psp(p))
            self.pseudopotentials = psps
        if len(self.pseudopotentials) != len(self.species):
            raise ConfigurationError("Need exactly one pseudopotential per atom")

        if not np.isfinite(self.temperature) or self.temperature < 0:
            raise ConfigurationError(f"Temperature must be >= 0, got {self.temperature}")
        self.smearing = get_smearing(self.smearing)

        if self.n_electrons is None:
            self.n_electrons = float(sum(p.Zion for p in self.pseudopotentials))
        if self.n_electrons <= 0:
            raise ConfigurationError(f"Number of electrons must be positive, got {self.n_electrons}")

    @classmethod
    def from_angstrom(cls, lattice_vectors, species, positions, **kwargs) -> "Model":
        """Create a Model from a lattice given in Angstrom (columns).

        Positions remain fractional.
        """
        lattice = np.asarray(lattice_vectors, dtype=np.float64) * ANGSTROM_TO_BOHR
        return cls(lattice=lattice, species=species, positions=positions, **kwargs)

    @property
    def natom(self) -> int:
        return len(self.species)

    @property
    def recip_lattice(self) -> jnp.ndarray:
        """Reciprocal lattice vectors (columns), in 1/Bohr."""
        return reciprocal_lattice(self.lattice)

    @property
    def volume(self) -> float:
        """Unit cell volume in Bohr^3."""
        return float(cell_volume(self.lattice))

    @property
    def cartesian_positions(self) -> jnp.ndarray:
        """Atomic positions in Cartesian coordinates (Bohr)."""
        return fractional_to_cartesian(self.positions, self.lattice)

    @property
    def Z_vals(self) -> jnp.ndarray:
        """(natom,) valence charges."""
        return jnp.array([p.Zion for p in self.pseudopotentials], dtype=jnp.float64)

    @property
    def n_filled(self) -> int:
        """Number of bands needed to hold all electrons at fixed filling."""
        return int(np.ceil(self.n_electrons / FILLING - 1e-8))

    def atom_groups(self) -> dict:
        """Atom indices grouped by pseudopotential identity."""
        groups: dict = {}
        for i, psp in enumerate(self.pseudopotentials):
            key = (psp.symbol, psp.functional, psp.Zion)
            groups.setdefault(key, []).append(i)
        return groups
