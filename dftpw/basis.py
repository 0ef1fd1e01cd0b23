"""Plane-wave basis set generation and FFT utilities.

At each k-point the basis holds the G-vectors with (1/2)|k+G|^2 <= Ecut.
All k-points share one real-space FFT grid, sized so that products of two
basis functions are represented without aliasing:

    n_i = next_fft_size(max(2*ceil(2*sqrt(2*Ecut)*|a_i|/(2*pi)) + 1,
                            2*max|m_i| + 1))

where a_i are the lattice vectors and m_i the Miller indices of the basis.
"""

from functools import partial
from typing import NamedTuple, Optional

import jax
import jax.numpy as jnp
import numpy as np

from dftpw.constants import TWO_PI
from dftpw.errors import ConfigurationError
from dftpw.kpoints import (monkhorst_pack, gamma_point, kgrid_from_maximal_spacing,
                           reduce_kpoints_time_reversal, check_kweights)


class Kpoint(NamedTuple):
    """Plane-wave basis data for a single k-point."""
    coordinate: jnp.ndarray       # (3,) fractional k
    coordinate_cart: jnp.ndarray  # (3,) Cartesian k
    weight: float
    miller: np.ndarray            # (npw, 3) integer Miller indices
    kg_vectors: jnp.ndarray       # (npw, 3) k+G vectors
    kinetic: jnp.ndarray          # (npw,) kinetic energies (1/2)|k+G|^2
    flat_index: jnp.ndarray       # (npw,) positions in the flattened FFT grid

    @property
    def npw(self) -> int:
        return len(self.kinetic)


def _next_fft_size(n: int) -> int:
    """Find next integer >= n that factors only into 2, 3, 5 (efficient FFT size)."""
    if n <= 1:
        return 1
    while True:
        m = n
        for p in [2, 3, 5]:
            while m % p == 0:
                m //= p
        if m == 1:
            return n
        n += 1


def compute_fft_size(lattice, ecut: float, max_miller=(0, 0, 0)) -> tuple[int, int, int]:
    """FFT grid dimensions for a given cutoff.

    Args:
        lattice: (3, 3) lattice vectors (columns).
        ecut: Kinetic energy cutoff in Hartree.
        max_miller: Largest |m_i| of any basis vector, per direction.

    Returns:
        (n1, n2, n3) grid dimensions.
    """
    a_norms = np.linalg.norm(np.asarray(lattice, dtype=np.float64), axis=0)
    # Density components reach 2*sqrt(2*Ecut)
    gmax = 2.0 * np.sqrt(2.0 * ecut)
    sizes = []
    for i in range(3):
        n = 2 * int(np.ceil(gmax * a_norms[i] / TWO_PI - 1e-8)) + 1
        n = max(n, 2 * int(max_miller[i]) + 1)
        sizes.append(_next_fft_size(n))
    return tuple(sizes)


def _miller_bounds(lattice, ecut: float, k_cart) -> np.ndarray:
    """Per-direction bound on |m_i| for |k+G| <= sqrt(2*Ecut).

    Uses |m_i| = |a_i . G| / 2pi <= |a_i| (|k+G| + |k|) / 2pi.
    """
    a_norms = np.linalg.norm(np.asarray(lattice, dtype=np.float64), axis=0)
    radius = np.sqrt(2.0 * ecut) + np.linalg.norm(k_cart)
    return np.ceil(radius * a_norms / TWO_PI).astype(int)


@partial(jax.jit, static_argnums=(2,))
def _scatter_to_real(coeffs, flat_index, fft_size):
    n_total = fft_size[0] * fft_size[1] * fft_size[2]
    if coeffs.ndim == 1:
        grid = jnp.zeros(n_total, dtype=jnp.complex128).at[flat_index].set(coeffs)
        # ifftn includes 1/N; psi(r) = sum_G c_G e^{iGr}
        return jnp.fft.ifftn(grid.reshape(fft_size)) * n_total
    nb = coeffs.shape[1]
    grid = jnp.zeros((n_total, nb), dtype=jnp.complex128).at[flat_index].set(coeffs)
    grid = grid.T.reshape((nb,) + fft_size)
    return jnp.fft.ifftn(grid, axes=(1, 2, 3)) * n_total


@partial(jax.jit, static_argnums=(2,))
def _gather_from_real(field, flat_index, fft_size):
    n_total = fft_size[0] * fft_size[1] * fft_size[2]
    if field.ndim == 3:
        field_g = jnp.fft.fftn(field) / n_total
        return field_g.reshape(-1)[flat_index]
    nb = field.shape[0]
    field_g = jnp.fft.fftn(field, axes=(1, 2, 3)) / n_total
    return field_g.reshape(nb, -1)[:, flat_index].T


class PlaneWaveBasis:
    """Plane-wave discretization of a Model.

    Attributes:
        model: The physical model.
        ecut: Kinetic energy cutoff in Hartree.
        kpoints: List of Kpoint records, in input order.
        kweights: (nk,) k-point weights, summing to 1.
        fft_size: (n1, n2, n3) real-space grid dimensions.
        G_cart: (n1, n2, n3, 3) Cartesian G-vectors of the full FFT grid.
        G2: (n1, n2, n3) |G|^2 on the full grid.
        r_frac: (n1, n2, n3, 3) fractional coordinates of the grid points.
        dvol: Volume element Omega / N.
    """

    def __init__(self, model, ecut: float, kcoords=None, kweights=None,
                 fft_size: Optional[tuple[int, int, int]] = None):
        if not np.isfinite(ecut) or ecut <= 0:
            raise ConfigurationError(f"Ecut must be positive, got {ecut}")
        if kcoords is None:
            kcoords, default_weights = gamma_point()
            if kweights is None:
                kweights = default_weights
        kcoords = np.asarray(kcoords, dtype=np.float64).reshape(-1, 3)
        if kweights is None:
            kweights = np.ones(len(kcoords)) / len(kcoords)
        kweights = check_kweights(kweights)
        if len(kweights) != len(kcoords):
            raise ConfigurationError(
                f"{len(kcoords)} k-points given with {len(kweights)} weights"
            )

        self.model = model
        self.ecut = float(ecut)
        lattice = np.asarray(model.lattice)
        recip = np.asarray(model.recip_lattice)
        kcart_all = kcoords @ recip.T

        bounds = [_miller_bounds(lattice, ecut, kc) for kc in kcart_all]
        max_miller = np.max(np.stack(bounds), axis=0)
        if fft_size is None:
            fft_size = compute_fft_size(lattice, ecut, max_miller)
        self.fft_size = tuple(int(n) for n in fft_size)
        if len(self.fft_size) != 3 or min(self.fft_size) < 1:
            raise ConfigurationError(f"Invalid FFT size {fft_size}")

        self.kpoints = [
            self._build_kpoint(kf, kc, float(w), bound, recip)
            for kf, kc, w, bound in zip(kcoords, kcart_all, kweights, bounds)
        ]
        self.kweights = kweights

        n1, n2, n3 = self.fft_size
        self.n_grid = n1 * n2 * n3
        self.volume = model.volume
        self.dvol = self.volume / self.n_grid

        freqs = [np.fft.fftfreq(n, d=1.0 / n) for n in self.fft_size]
        m1, m2, m3 = np.meshgrid(*freqs, indexing='ij')
        miller = np.stack([m1, m2, m3], axis=-1)
        self.G_cart = jnp.array(miller @ recip.T)
        self.G2 = jnp.sum(self.G_cart**2, axis=-1)

        r1, r2, r3 = np.meshgrid(*[np.arange(n) / n for n in self.fft_size], indexing='ij')
        self.r_frac = jnp.array(np.stack([r1, r2, r3], axis=-1))

    def _build_kpoint(self, kfrac, kcart, weight, bound, recip) -> Kpoint:
        """Select the G-vectors with (1/2)|k+G|^2 <= Ecut in deterministic order."""
        ranges = [np.arange(-b, b + 1) for b in bound]
        m1, m2, m3 = np.meshgrid(*ranges, indexing='ij')
        miller = np.stack([m1.ravel(), m2.ravel(), m3.ravel()], axis=-1)
        kg = miller @ recip.T + kcart[None, :]
        kinetic = 0.5 * np.sum(kg**2, axis=-1)
        mask = kinetic <= self.ecut
        if not np.any(mask):
            raise ConfigurationError(
                f"Empty plane-wave basis at k-point {kfrac} for Ecut={self.ecut}"
            )
        miller = miller[mask]
        if np.any(2 * np.abs(miller).max(axis=0) + 1 > np.array(self.fft_size)):
            raise ConfigurationError(
                f"FFT grid {self.fft_size} too small for the basis at k-point {kfrac}"
            )

        n1, n2, n3 = self.fft_size
        idx = miller % np.array(self.fft_size)
        flat = idx[:, 0] * (n2 * n3) + idx[:, 1] * n3 + idx[:, 2]
        return Kpoint(
            coordinate=jnp.array(kfrac),
            coordinate_cart=jnp.array(kcart),
            weight=weight,
            miller=miller,
            kg_vectors=jnp.array(kg[mask]),
            kinetic=jnp.array(kinetic[mask]),
            flat_index=jnp.array(flat),
        )

    @classmethod
    def from_kgrid(cls, model, ecut: float, kgrid=None, kspacing: Optional[float] = None,
                   kshift=(0.0, 0.0, 0.0), use_symmetry: bool = True,
                   fft_size=None) -> "PlaneWaveBasis":
        """Build a basis on a Monkhorst-Pack grid.

        Args:
            model: Physical model.
            ecut: Kinetic energy cutoff in Hartree.
            kgrid: (nk1, nk2, nk3); mutually exclusive with kspacing.
            kspacing: Maximal k-point spacing in 1/Bohr.
            kshift: Grid shift in fractional coordinates.
            use_symmetry: Fold k and -k together (time-reversal symmetry).
        """
        if kgrid is not None and kspacing is not None:
            raise ConfigurationError("Specify either kgrid or kspacing, not both")
        if kgrid is None:
            kgrid = (kgrid_from_maximal_spacing(model.lattice, kspacing)
                     if kspacing is not None else (1, 1, 1))
        kcoords, kweights = monkhorst_pack(tuple(kgrid), kshift)
        if use_symmetry:
            kcoords, kweights = reduce_kpoints_time_reversal(kcoords, kweights)
        basis = cls(model, ecut, kcoords, kweights, fft_size=fft_size)
        basis.kgrid = tuple(int(n) for n in kgrid)
        return basis

    @property
    def n_kpoints(self) -> int:
        return len(self.kpoints)

    @property
    def max_npw(self) -> int:
        return max(k.npw for k in self.kpoints)

    def G_to_r(self, kpt: Kpoint, coeffs: jnp.ndarray) -> jnp.ndarray:
        """Plane-wave coefficients to real space: f(r) = sum_G c_G e^{i(k+G)r}.

        The Bloch phase e^{ikr} is left out; it cancels in every product used here.

        Args:
            kpt: The k-point the coefficients belong to.
            coeffs: (npw,) vector or (npw, nb) block of columns.

        Returns:
            (n1, n2, n3) grid, or (nb, n1, n2, n3) for a block.
        """
        return _scatter_to_real(jnp.asarray(coeffs, dtype=jnp.complex128),
                                kpt.flat_index, self.fft_size)

    def r_to_G(self, kpt: Kpoint, field: jnp.ndarray) -> jnp.ndarray:
        """Inverse of G_to_r, restricted to the basis of ``kpt``.

        Args:
            field: (n1, n2, n3) grid or (nb, n1, n2, n3) stack of grids.

        Returns:
            (npw,) coefficients, or (npw, nb) for a stack.
        """
        return _gather_from_real(jnp.asarray(field, dtype=jnp.complex128),
                                 kpt.flat_index, self.fft_size)

    def fourier(self, field: jnp.ndarray) -> jnp.ndarray:
        """f(G) = (1/N) sum_r f(r) e^{-iGr} on the full grid."""
        return jnp.fft.fftn(field) / self.n_grid

    def real(self, coeffs: jnp.ndarray) -> jnp.ndarray:
        """Inverse of fourier; returns the real part."""
        return jnp.real(jnp.fft.ifftn(coeffs) * self.n_grid)
