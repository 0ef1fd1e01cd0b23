"""Kohn-Sham Hamiltonian construction and application.

The KS Hamiltonian in a plane-wave basis at k-point k is:
    H = T + V_loc + V_H + V_xc + V_nl

where:
    T_{G,G'} = (1/2)|k+G|^2 * delta_{G,G'}  (kinetic energy)
    V_loc, V_H, V_xc are local potentials, applied on the real-space grid
    V_nl = sum |p> D <p| is the separable nonlocal pseudopotential

The Hamiltonian is never stored as a matrix. Each k-point block applies its
terms to a block of column vectors X of shape (npw, n).
"""

from typing import NamedTuple

import jax.numpy as jnp
import numpy as np

from dftpw.errors import check_finite
from dftpw.pseudopotential import (eval_psp_local_fourier, eval_psp_projector_fourier,
                                   real_spherical_harmonics)
from dftpw.potentials import hartree_potential, xc_potential


class KineticTerm:
    """Diagonal kinetic operator (1/2)|k+G|^2."""

    def __init__(self, kpt):
        self.kinetic = kpt.kinetic

    def apply(self, X: jnp.ndarray) -> jnp.ndarray:
        if X.ndim == 1:
            return self.kinetic * X
        return self.kinetic[:, None] * X


class LocalPotentialTerm:
    """Multiplication by a real-space potential, applied through FFTs.

    (V psi)(G) = FFT[ V(r) * IFFT[psi](r) ](G)
    """

    def __init__(self, basis, kpt, potential: jnp.ndarray):
        self.basis = basis
        self.kpt = kpt
        self.potential = potential

    def apply(self, X: jnp.ndarray) -> jnp.ndarray:
        psi_r = self.basis.G_to_r(self.kpt, X)
        return self.basis.r_to_G(self.kpt, self.potential * psi_r)


class NonlocalTerm:
    """Separable nonlocal operator P D P^H.

    Attributes:
        projectors: (npw, n_proj) projector columns.
        coupling: (n_proj, n_proj) block-diagonal coupling matrix D.
    """

    def __init__(self, projectors: jnp.ndarray, coupling: jnp.ndarray):
        self.projectors = projectors
        self.coupling = coupling

    @property
    def n_projectors(self) -> int:
        return self.projectors.shape[1]

    def apply(self, X: jnp.ndarray) -> jnp.ndarray:
        if self.n_projectors == 0:
            return jnp.zeros_like(X)
        P = self.projectors
        return P @ (self.coupling @ (P.conj().T @ X))


class HamiltonianBlock:
    """Hamiltonian restricted to one k-point: the sum of its terms."""

    def __init__(self, basis, kpoint, terms: list):
        self.basis = basis
        self.kpoint = kpoint
        self.terms = terms

    @property
    def size(self) -> int:
        return self.kpoint.npw

    def apply(self, X: jnp.ndarray) -> jnp.ndarray:
        X = jnp.asarray(X, dtype=jnp.complex128)
        HX = self.terms[0].apply(X)
        for term in self.terms[1:]:
            HX = HX + term.apply(X)
        return HX

    __call__ = apply

    def kinetic_diagonal(self) -> jnp.ndarray:
        return self.kpoint.kinetic

    def dense_matrix(self) -> jnp.ndarray:
        """Materialize the (npw, npw) matrix. Only meant for small test systems."""
        return self.apply(jnp.eye(self.size, dtype=jnp.complex128))


class Hamiltonian(NamedTuple):
    """Hamiltonian blocks for all k-points plus the potentials they share.

    potentials maps "AtomicLocal", "Hartree", "Xc" and "total" to real-space grids.
    """
    basis: object
    blocks: list
    potentials: dict


class AtomicTerms(NamedTuple):
    """Density-independent parts of the Hamiltonian."""
    local_potential: jnp.ndarray  # (n1, n2, n3) atomic local potential
    nonlocal_terms: list          # one NonlocalTerm per k-point


def structure_factors(model, G_cart: jnp.ndarray) -> dict:
    """S_a(G) = sum_{i in a} exp(-i G . tau_i) for each pseudopotential group a.

    Args:
        model: Model.
        G_cart: (..., 3) Cartesian reciprocal vectors.

    Returns:
        Dict mapping group key -> complex array with the shape of G_cart[..., 0].
    """
    tau = model.cartesian_positions
    sf = {}
    for key, atoms in model.atom_groups().items():
        s = jnp.zeros(G_cart.shape[:-1], dtype=jnp.complex128)
        for ia in atoms:
            s = s + jnp.exp(-1j * (G_cart @ tau[ia]))
        sf[key] = s
    return sf


def local_pseudopotential(basis) -> jnp.ndarray:
    """Atomic local potential on the real-space grid.

    V_loc(G) = (1/Omega) sum_a S_a(G) V_a(|G|),  V_loc(G=0) = 0

    Args:
        basis: PlaneWaveBasis.

    Returns:
        (n1, n2, n3) real potential.
    """
    model = basis.model
    q = jnp.sqrt(basis.G2)
    sf = structure_factors(model, basis.G_cart)
    groups = model.atom_groups()
    v_g = jnp.zeros(basis.fft_size, dtype=jnp.complex128)
    for key, atoms in groups.items():
        psp = model.pseudopotentials[atoms[0]]
        v_g = v_g + sf[key] * eval_psp_local_fourier(psp, q)
    return basis.real(v_g / basis.volume)


def build_projectors(basis, kpt) -> NonlocalTerm:
    """Build the nonlocal projectors and coupling matrix at one k-point.

    The projector for atom a, channel (l, m, i) is
        beta(G) = (-i)^l p^l_i(|k+G|) Y_lm(k+G) exp(-i(k+G).tau_a) / sqrt(Omega)
    and D_{(i,m),(j,m')} = h^l_{ij} delta_{m,m'} within each atom and channel.

    Args:
        basis: PlaneWaveBasis.
        kpt: Kpoint.

    Returns:
        NonlocalTerm with (npw, n_proj) projectors.
    """
    model = basis.model
    kg = kpt.kg_vectors
    q = jnp.linalg.norm(kg, axis=-1)
    tau = model.cartesian_positions
    sqrt_omega = np.sqrt(basis.volume)

    columns = []
    coupling_blocks = []
    for key, atoms in model.atom_groups().items():
        psp = model.pseudopotentials[atoms[0]]
        for l in range(psp.lmax + 1):
            n_proj = psp.n_projectors(l)
            if n_proj == 0:
                continue
            radial = [eval_psp_projector_fourier(psp, i + 1, l, q) for i in range(n_proj)]
            ylm = real_spherical_harmonics(kg, l)  # (2l+1, npw)
            prefactor = (-1j) ** l / sqrt_omega
            n_m = 2 * l + 1
            # h_{(i,m),(j,m')} = h^l_{ij} * delta_{m,m'}
            block = np.kron(np.asarray(psp.h[l]), np.eye(n_m))
            for ia in atoms:
                phase = jnp.exp(-1j * (kg @ tau[ia]))
                for i in range(n_proj):
                    for m in range(n_m):
                        columns.append(prefactor * radial[i] * ylm[m] * phase)
                coupling_blocks.append(block)

    if not columns:
        return NonlocalTerm(jnp.zeros((kpt.npw, 0), dtype=jnp.complex128), jnp.zeros((0, 0)))

    n_total = sum(b.shape[0] for b in coupling_blocks)
    coupling = np.zeros((n_total, n_total))
    start = 0
    for b in coupling_blocks:
        end = start + b.shape[0]
        coupling[start:end, start:end] = b
        start = end
    return NonlocalTerm(jnp.stack(columns, axis=1), jnp.array(coupling, dtype=jnp.complex128))


def build_atomic_terms(basis) -> AtomicTerms:
    """Precompute the density-independent atomic local potential and projectors."""
    return AtomicTerms(
        local_potential=local_pseudopotential(basis),
        nonlocal_terms=[build_projectors(basis, kpt) for kpt in basis.kpoints],
    )


def build_hamiltonian(basis, rho: jnp.ndarray, atomic_terms: AtomicTerms | None = None,
                      iteration: int | None = None) -> Hamiltonian:
    """Assemble the Kohn-Sham Hamiltonian for a given density.

    Args:
        basis: PlaneWaveBasis.
        rho: (n1, n2, n3) electron density.
        atomic_terms: Precomputed AtomicTerms (built if None).
        iteration: SCF iteration, reported if a potential becomes non-finite.

    Returns:
        Hamiltonian whose potentials are evaluated at rho.
    """
    if atomic_terms is None:
        atomic_terms = build_atomic_terms(basis)
    v_atomic = atomic_terms.local_potential
    v_hartree = check_finite(hartree_potential(basis, rho), "Hartree potential", iteration)
    _, v_xc = xc_potential(basis, basis.model.xc, rho, iteration)
    v_total = check_finite(v_atomic + v_hartree + v_xc, "total local potential", iteration)

    blocks = []
    for kpt, nonlocal_term in zip(basis.kpoints, atomic_terms.nonlocal_terms):
        terms = [KineticTerm(kpt), LocalPotentialTerm(basis, kpt, v_total), nonlocal_term]
        blocks.append(HamiltonianBlock(basis, kpt, terms))

    potentials = {
        "AtomicLocal": v_atomic,
        "Hartree": v_hartree,
        "Xc": v_xc,
        "total": v_total,
    }
    return Hamiltonian(basis=basis, blocks=blocks, potentials=potentials)
