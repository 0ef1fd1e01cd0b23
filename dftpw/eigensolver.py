"""Iterative eigensolvers for the Kohn-Sham equations.

Implements:
1. LOBPCG (Locally Optimal Block Preconditioned Conjugate Gradient)
2. Direct diagonalization (for small systems / reference)
3. Dispatch over all k-point blocks of a Hamiltonian

Reference: A. V. Knyazev, SIAM J. Sci. Comput. 23, 517 (2001).
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, NamedTuple, Optional

import jax
import jax.numpy as jnp
import numpy as np

from dftpw.errors import ConfigurationError, SubspaceCollapseError, check_finite


class LobpcgResult(NamedTuple):
    """Outcome of a LOBPCG run for one Hamiltonian block."""
    eigenvalues: jnp.ndarray     # (n,) ascending
    X: jnp.ndarray               # (npw, n) orthonormal eigenvectors
    residual_norms: jnp.ndarray  # (n,) ||A x - lambda x||
    n_iter: int
    converged: bool


class DiagonalizationResult(NamedTuple):
    """LOBPCG results for all k-points, in k-point order."""
    eigenvalues: list
    X: list
    residual_norms: list
    n_iter: list
    converged: bool


def _orthonormalize(V: jnp.ndarray, drop_tol: float = 1e-10) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Orthonormalize columns of V through the eigendecomposition of its Gram matrix.

    Columns are normalized first; directions whose Gram eigenvalue falls below
    drop_tol times the largest are dropped. Two passes are made.

    Args:
        V: (n, m) matrix.
        drop_tol: Relative tolerance for detecting linear dependence.

    Returns:
        Q: (n, m') orthonormal matrix with m' <= m.
        T: (m, m') transformation with Q = V @ T, to be applied to A @ V.
    """
    n, m = V.shape
    T = jnp.eye(m, dtype=V.dtype)
    for _ in range(2):
        if V.shape[1] == 0:
            break
        norms = jnp.linalg.norm(V, axis=0)
        keep = np.asarray(norms) > 1e-14 * max(1.0, float(jnp.max(norms)))
        V = V[:, keep] / norms[keep]
        T = T[:, keep] / norms[keep]
        if V.shape[1] == 0:
            break

        gram = V.conj().T @ V
        gram = 0.5 * (gram + gram.conj().T)
        evals, evecs = jnp.linalg.eigh(gram)
        keep = np.asarray(evals) > drop_tol * float(evals[-1])
        C = evecs[:, keep] / jnp.sqrt(evals[keep])
        V = V @ C
        T = T @ C
    return V, T


def random_orbitals(npw: int, n_bands: int, seed: int = 0) -> jnp.ndarray:
    """Random orthonormal (npw, n_bands) complex initial guess."""
    key_re, key_im = jax.random.split(jax.random.PRNGKey(seed))
    X = (jax.random.normal(key_re, (npw, n_bands), dtype=jnp.float64)
         + 1j * jax.random.normal(key_im, (npw, n_bands), dtype=jnp.float64))
    Q, _ = _orthonormalize(X)
    return Q


def _rayleigh_ritz(S, AS):
    H = S.conj().T @ AS
    H = 0.5 * (H + H.conj().T)
    evals, evecs = jnp.linalg.eigh(H)
    return evals, evecs


def lobpcg(
    A: Callable,
    X0: jnp.ndarray,
    precon: Optional[Callable] = None,
    tol: float = 1e-6,
    maxiter: int = 100,
    n_conv_check: Optional[int] = None,
) -> LobpcgResult:
    """LOBPCG eigensolver for the lowest eigenpairs of a Hermitian operator.

    Each iteration performs a Rayleigh-Ritz step on the subspace [X, W, P],
    where W are preconditioned residuals and P the previous search directions.
    Bands whose residual is below ``tol`` stop receiving new directions (soft
    locking) but stay in the Rayleigh-Ritz problem.

    Args:
        A: Operator acting on (npw, m) blocks of column vectors.
        X0: (npw, n) initial guess; n is the number of eigenpairs computed.
        precon: Callable applied to residual blocks (e.g. kinetic preconditioner).
        tol: Convergence tolerance on the residual norms.
        maxiter: Maximum number of iterations.
        n_conv_check: Only the first n_conv_check bands must converge
            (defaults to all n).

    Returns:
        LobpcgResult with ascending eigenvalues and orthonormal X.

    Raises:
        SubspaceCollapseError: if X0 has fewer than n independent columns.
    """
    X0 = jnp.asarray(X0, dtype=jnp.complex128)
    n = X0.shape[1]
    if n_conv_check is None:
        n_conv_check = n
    if n > X0.shape[0]:
        raise ConfigurationError(f"Cannot compute {n} eigenpairs with {X0.shape[0]} basis functions")

    X, _ = _orthonormalize(X0)
    if X.shape[1] < n:
        raise SubspaceCollapseError(X.shape[1], n, 0)
    AX = A(X)
    evals, evecs = _rayleigh_ritz(X, AX)
    X = X @ evecs
    AX = AX @ evecs
    lam = evals

    P = AP = None
    n_iter = 0
    while True:
        R = AX - X * lam[None, :]
        check_finite(R, "eigensolver residual")
        norms = jnp.linalg.norm(R, axis=0)
        converged = bool(jnp.all(norms[:n_conv_check] < tol))
        if converged or n_iter >= maxiter:
            break
        n_iter += 1

        # Soft locking: converged bands get no new search directions
        active = np.asarray(norms) >= tol
        W = R[:, active]
        if precon is not None:
            W = precon(W)

        for _ in range(2):
            W = W - X @ (X.conj().T @ W)
        W, _ = _orthonormalize(W)
        if W.shape[1] == 0:
            break
        AW = A(W)

        blocks, ablocks = [X, W], [AX, AW]
        if P is not None:
            # P orthogonal to X and W; AP follows the same linear combinations
            for _ in range(2):
                cx = X.conj().T @ P
                cw = W.conj().T @ P
                P = P - X @ cx - W @ cw
                AP = AP - AX @ cx - AW @ cw
            P, T = _orthonormalize(P)
            AP = AP @ T
            if P.shape[1] > 0:
                blocks.append(P)
                ablocks.append(AP)

        S = jnp.concatenate(blocks, axis=1)
        AS = jnp.concatenate(ablocks, axis=1)
        if S.shape[1] < n:
            raise SubspaceCollapseError(S.shape[1], n, n_iter)

        evals, evecs = _rayleigh_ritz(S, AS)
        c = evecs[:, :n]
        lam = evals[:n]
        X = S @ c
        AX = AS @ c
        P = S[:, n:] @ c[n:, :]
        AP = AS[:, n:] @ c[n:, :]

    return LobpcgResult(eigenvalues=lam, X=X, residual_norms=norms,
                        n_iter=n_iter, converged=converged)


def direct_diagonalize(ham_block, n_bands: int) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Solve KS equations by explicit Hamiltonian construction and diagonalization.

    Only feasible for small basis sets (npw < ~2000).

    Args:
        ham_block: HamiltonianBlock.
        n_bands: Number of eigenvalues/vectors to compute.

    Returns:
        eigenvalues: (n_bands,) sorted eigenvalues.
        eigenvectors: (npw, n_bands) eigenvectors as columns.
    """
    H = ham_block.dense_matrix()
    H = 0.5 * (H + H.conj().T)
    eigenvalues, eigenvectors = jnp.linalg.eigh(H)
    return eigenvalues[:n_bands], eigenvectors[:, :n_bands]


def diagonalize_all_kblocks(
    ham,
    n_bands: int,
    psi_guess: Optional[list] = None,
    preconditioner=None,
    tol: float = 1e-6,
    maxiter: int = 100,
    n_conv_check: Optional[int] = None,
    n_workers: int = 1,
    seed: int = 0,
) -> DiagonalizationResult:
    """Run LOBPCG on every k-point block of a Hamiltonian.

    The blocks are independent; with n_workers > 1 they are dispatched to a
    thread pool, each task owning its k-point.

    Args:
        ham: Hamiltonian.
        n_bands: Bands per k-point.
        psi_guess: Per-k initial guesses (random orbitals if None).
        preconditioner: Object with for_kpoint(kpt), or None.
        tol, maxiter, n_conv_check: Passed to lobpcg.
        n_workers: Number of threads.
        seed: Seed for random initial guesses (offset by the k-point index).
    """
    def solve(ik):
        block = ham.blocks[ik]
        kpt = block.kpoint
        if psi_guess is not None and psi_guess[ik] is not None:
            X0 = jnp.asarray(psi_guess[ik])[:, :n_bands]
            if X0.shape[1] < n_bands:
                extra = random_orbitals(kpt.npw, n_bands - X0.shape[1], seed + ik)
                X0 = jnp.concatenate([X0, extra], axis=1)
        else:
            X0 = random_orbitals(kpt.npw, n_bands, seed + ik)
        precon = preconditioner.for_kpoint(kpt) if preconditioner is not None else None
        return lobpcg(block, X0, precon=precon, tol=tol, maxiter=maxiter,
                      n_conv_check=n_conv_check)

    indices = range(len(ham.blocks))
    if n_workers > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            results = list(pool.map(solve, indices))
    else:
        results = [solve(ik) for ik in indices]

    return DiagonalizationResult(
        eigenvalues=[r.eigenvalues for r in results],
        X=[r.X for r in results],
        residual_norms=[r.residual_norms for r in results],
        n_iter=[r.n_iter for r in results],
        converged=all(r.converged for r in results),
    )
