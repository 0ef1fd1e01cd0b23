"""Hartwigsen-Goedecker-Hutter (HGH / GTH) norm-conserving pseudopotentials.

References:
    S. Goedecker, M. Teter, J. Hutter, Phys. Rev. B 54, 1703 (1996).
    C. Hartwigsen, S. Goedecker, J. Hutter, Phys. Rev. B 58, 3641 (1998).
    M. Krack, Theor. Chem. Acc. 114, 145 (2005).

Local part (analytical Fourier transform, q = |G|):
    V_loc(q) = -4*pi*Z_ion / q^2 * exp(-q^2 r_loc^2 / 2)
             + sqrt(8*pi^3) * r_loc^3 * exp(-q^2 r_loc^2 / 2)
             * (C1 + C2*(3 - q^2 r_loc^2)
                + C3*(15 - 10*q^2 r_loc^2 + q^4 r_loc^4)
                + C4*(105 - 105*q^2 r_loc^2 + 21*q^4 r_loc^4 - q^6 r_loc^6))

The Coulomb tail diverges at q=0. The q=0 value is defined as zero here
(compensating background); the finite remainder enters the total energy
through eval_psp_energy_correction.

Nonlocal part uses separable projectors p^l_i with coupling matrices h^l_ij.
"""

from dataclasses import dataclass, field

import jax.numpy as jnp
import numpy as np

from dftpw.constants import PI, FOUR_PI
from dftpw.errors import ConfigurationError


@dataclass
class PspHgh:
    """Parameters for a single HGH pseudopotential.

    Attributes:
        symbol: Element symbol.
        Zion: Number of valence electrons.
        rloc: Local radius parameter.
        cloc: Local potential coefficients [C1, C2, C3, C4].
        rp: Projector radii, one per angular momentum channel l.
        h: Projector coupling matrices h^l_{ij}, one (n_l, n_l) array per l.
        functional: Functional family the parameters were fitted for.
        identifier: Name the pseudopotential was loaded under.
    """
    symbol: str
    Zion: int
    rloc: float
    cloc: list[float] = field(default_factory=list)
    rp: list[float] = field(default_factory=list)
    h: list[np.ndarray] = field(default_factory=list)
    functional: str = "lda"
    identifier: str = ""

    @property
    def lmax(self) -> int:
        return len(self.rp) - 1

    def n_projectors(self, l: int) -> int:
        """Number of radial projectors in channel l."""
        return self.h[l].shape[0]

    @property
    def cloc_padded(self) -> np.ndarray:
        padded = np.zeros(4)
        padded[:len(self.cloc)] = self.cloc
        return padded


def eval_psp_local_fourier(psp: PspHgh, q: jnp.ndarray) -> jnp.ndarray:
    """Local pseudopotential form factor V_loc(q), per atom, unnormalized.

    The potential of one atom in a cell of volume Omega is
    V(G) = V_loc(|G|) * exp(-i G.tau) / Omega.

    Args:
        psp: HGH pseudopotential parameters.
        q: (...,) reciprocal vector magnitudes.

    Returns:
        (...,) form factor; exactly zero where q == 0.
    """
    rloc = psp.rloc
    c = psp.cloc_padded
    q = jnp.asarray(q, dtype=jnp.float64)
    q2 = q * q
    q2_safe = jnp.where(q2 == 0.0, 1.0, q2)
    qr2 = q2 * rloc**2
    exp_term = jnp.exp(-qr2 / 2.0)

    v_coulomb = -FOUR_PI * psp.Zion / q2_safe * exp_term
    poly = (c[0]
            + c[1] * (3.0 - qr2)
            + c[2] * (15.0 - 10.0 * qr2 + qr2**2)
            + c[3] * (105.0 - 105.0 * qr2 + 21.0 * qr2**2 - qr2**3))
    v_gauss = jnp.sqrt(8.0 * PI**3) * rloc**3 * exp_term * poly

    return jnp.where(q2 == 0.0, 0.0, v_coulomb + v_gauss)


def eval_psp_energy_correction(psp: PspHgh, n_electrons: float) -> float:
    """Energy correction from the G=0 component of the local potential.

    The divergent Coulomb tail cancels against the Hartree and Ewald G=0
    terms, the finite remainder
        lim_{q->0} [V_loc(q) + 4*pi*Z/q^2]
            = 2*pi*Z*r_loc^2 + sqrt(8*pi^3)*r_loc^3*(C1 + 3*C2 + 15*C3 + 105*C4)
    interacts with the uniform part of the electron density. The returned value
    still has to be divided by the cell volume.
    """
    c = psp.cloc_padded
    dc = (psp.Zion * psp.rloc**2 / 2.0
          + np.sqrt(PI / 2.0) * psp.rloc**3 * float(np.dot(c, [1.0, 3.0, 15.0, 105.0])))
    return float(FOUR_PI * n_electrons * dc)


def eval_psp_projector_fourier(psp: PspHgh, i: int, l: int, q: jnp.ndarray) -> jnp.ndarray:
    """Fourier transform of the radial HGH projector p^l_i.

    The real-space projectors are
        p^l_i(r) = sqrt(2) * r^{l+2(i-1)} * exp(-r^2/(2 r_l^2))
                   / (r_l^{l+(4i-1)/2} * sqrt(Gamma(l+(4i-1)/2)))
    and their transforms 4*pi * int r^2 j_l(qr) p^l_i(r) dr are (Krack 2005)
        p^l_i(q) = 4 pi^{5/4} sqrt(2^{l+1} r_l^3) exp(-q^2 r_l^2/2) * poly_li(q r_l).

    Args:
        psp: HGH pseudopotential parameters.
        i: Projector index (1-based, as in the HGH papers).
        l: Angular momentum channel.
        q: (...,) magnitudes |k+G|.

    Returns:
        (...,) projector values.
    """
    rp = psp.rp[l]
    q = jnp.asarray(q, dtype=jnp.float64)
    x = q * rp
    x2 = x * x
    common = 4.0 * PI**1.25 * jnp.sqrt(2.0**(l + 1) * rp**3) * jnp.exp(-x2 / 2.0)

    if l == 0:
        if i == 1:
            return common
        if i == 2:
            return common * 2.0 / jnp.sqrt(15.0) * (3.0 - x2)
        if i == 3:
            return common * 4.0 / (3.0 * jnp.sqrt(105.0)) * (15.0 - 10.0 * x2 + x2**2)
    elif l == 1:
        if i == 1:
            return common / jnp.sqrt(3.0) * x
        if i == 2:
            return common * 2.0 / jnp.sqrt(105.0) * x * (5.0 - x2)
        if i == 3:
            return common * 4.0 / (3.0 * jnp.sqrt(1155.0)) * x * (35.0 - 14.0 * x2 + x2**2)
    elif l == 2:
        if i == 1:
            return common / jnp.sqrt(15.0) * x2
        if i == 2:
            return common * 2.0 / (3.0 * jnp.sqrt(105.0)) * x2 * (7.0 - x2)
    elif l == 3:
        if i == 1:
            return common / jnp.sqrt(105.0) * x * x2
    raise ValueError(f"Projector l={l}, i={i} not implemented")


def real_spherical_harmonics(vectors: jnp.ndarray, l: int) -> jnp.ndarray:
    """Compute real spherical harmonics Y_lm(r_hat) for all m at given l.

    Args:
        vectors: (npw, 3) vectors (need not be normalized).
        l: Angular momentum (0, 1 or 2).

    Returns:
        (2*l+1, npw) real spherical harmonics. For l > 0 the value at the
        zero vector is set to zero.
    """
    norm = jnp.linalg.norm(vectors, axis=-1)
    norm_safe = jnp.where(norm == 0.0, 1.0, norm)
    x = vectors[:, 0] / norm_safe
    y = vectors[:, 1] / norm_safe
    z = vectors[:, 2] / norm_safe

    if l == 0:
        return (jnp.ones_like(norm) * 0.5 / jnp.sqrt(PI))[None, :]

    if l == 1:
        c = jnp.sqrt(3.0 / FOUR_PI)
        ylm = jnp.stack([c * y, c * z, c * x], axis=0)
    elif l == 2:
        c0 = 0.25 * jnp.sqrt(5.0 / PI)
        c1 = 0.5 * jnp.sqrt(15.0 / PI)
        c2 = 0.25 * jnp.sqrt(15.0 / PI)
        ylm = jnp.stack([
            c1 * x * y,                  # Y_{2,-2}
            c1 * y * z,                  # Y_{2,-1}
            c0 * (3.0 * z * z - 1.0),    # Y_{2,0}
            c1 * x * z,                  # Y_{2,1}
            c2 * (x * x - y * y),        # Y_{2,2}
        ], axis=0)
    else:
        raise ValueError(f"l={l} not implemented (max l=2)")
    return jnp.where(norm[None, :] == 0.0, 0.0, ylm)


# ============================================================================
# Parameter table
# GTH-Pade (LDA) parameters from Goedecker, Teter, Hutter (1996) and
# Hartwigsen, Goedecker, Hutter (1998); GTH-PBE entries from the CP2K set.
# ============================================================================

def _make_hgh(symbol, Zion, rloc, cloc, rp=(), h=(), functional="lda"):
    hs = []
    for block in h:
        block = np.atleast_2d(np.array(block, dtype=np.float64))
        # Coupling matrices are symmetric; the tables list the upper triangle
        hs.append(np.triu(block) + np.triu(block, 1).T)
    return PspHgh(symbol=symbol, Zion=Zion, rloc=rloc, cloc=list(cloc),
                  rp=list(rp), h=hs, functional=functional)


_HGH_DATABASE: dict[tuple[str, str], PspHgh] = {
    ("H", "lda"): _make_hgh("H", 1, 0.20000000, [-4.18023680, 0.72507482]),
    ("He", "lda"): _make_hgh("He", 2, 0.20000000, [-9.11202340, 1.69836797]),
    ("Li", "lda"): _make_hgh("Li", 3, 0.40000000,
                             [-14.03493470, 9.55346109, -1.75328669, 0.08644523]),
    ("C", "lda"): _make_hgh("C", 4, 0.34883045, [-8.51377110, 1.22843203],
                            rp=[0.30455321], h=[[[9.52284179]]]),
    ("N", "lda"): _make_hgh("N", 5, 0.28917923, [-12.23481988, 1.76640728],
                            rp=[0.25660487], h=[[[13.55224272]]]),
    ("O", "lda"): _make_hgh("O", 6, 0.24762086, [-16.58031797, 2.39570092],
                            rp=[0.22178614], h=[[[18.26691718]]]),
    ("Na", "lda"): _make_hgh("Na", 9, 0.24631780, [-7.54559389, 0.94978099],
                             rp=[0.14190780, 0.16260350],
                             h=[[[36.55522782, -11.57770700],
                                 [0.0, 14.76498206]],
                                [[-0.72919513]]]),
    ("Mg", "lda"): _make_hgh("Mg", 2, 0.65181169, [-2.86429746],
                             rp=[0.55647814, 0.67756953],
                             h=[[[2.97095712, -0.51766488],
                                 [0.0, 0.66837084]],
                                [[1.12993246]]]),
    ("Al", "lda"): _make_hgh("Al", 3, 0.45000000, [-8.49135116],
                             rp=[0.46010427, 0.53674439],
                             h=[[[6.86726458, -2.15038876],
                                 [0.0, 3.08498668]],
                                [[1.93798172]]]),
    ("Si", "lda"): _make_hgh("Si", 4, 0.44000000, [-7.33610297],
                             rp=[0.42273813, 0.48427842],
                             h=[[[5.90692831, -1.26189397],
                                 [0.0, 3.25819622]],
                                [[2.72701346]]]),
    ("Cl", "lda"): _make_hgh("Cl", 7, 0.41000000, [-6.39208181],
                             rp=[0.33861282, 0.39636383],
                             h=[[[14.60920767, -5.48969499],
                                 [0.0, 5.09007974]],
                                [[3.82663452]]]),
    ("Ga", "lda"): _make_hgh("Ga", 3, 0.49000000, [-6.23392822],
                             rp=[0.61178539, 0.70575027],
                             h=[[[2.36854689, -0.57979762],
                                 [0.0, 0.49498862]],
                                [[0.63760007]]]),
    ("Ge", "lda"): _make_hgh("Ge", 4, 0.54000000, [-4.30885032],
                             rp=[0.42836784, 0.56646247],
                             h=[[[6.00512414, -2.15023853],
                                 [0.0, 1.70038991]],
                                [[1.35498601]]]),
    ("As", "lda"): _make_hgh("As", 5, 0.52000000, [-5.47790000],
                             rp=[0.45590000, 0.55510000],
                             h=[[[6.32960000, -1.82040000],
                                 [0.0, 2.25390000]],
                                [[1.85240000]]]),
    ("Mg", "pbe"): _make_hgh("Mg", 2, 0.57696017, [-2.69040744],
                             rp=[0.59392350, 0.70715728],
                             h=[[[3.50321099, -0.71677167],
                                 [0.0, 0.92534825]],
                                [[0.83115848]]],
                             functional="pbe"),
    ("Si", "pbe"): _make_hgh("Si", 4, 0.44000000, [-6.26928833],
                             rp=[0.43563383, 0.49794218],
                             h=[[[8.95174150, -2.70627082],
                                 [0.0, 3.49378060]],
                                [[2.43127673]]],
                             functional="pbe"),
}


def available_pseudopotentials() -> list[str]:
    """Identifiers accepted by load_psp, in 'hgh/<functional>/<symbol>' form."""
    return sorted(f"hgh/{func}/{sym.lower()}-q{psp.Zion}"
                  for (sym, func), psp in _HGH_DATABASE.items())


def load_psp(identifier: str, functional: str | None = None) -> PspHgh:
    """Look up HGH parameters.

    Accepted identifiers: "Si", "si-pade-q4", "si-q4", "hgh/lda/si-q4",
    "hgh/pbe/mg-q2.hgh". The functional family is taken from the path
    ("lda"/"pade" or "pbe") or from ``functional``, and defaults to LDA.

    Raises:
        ConfigurationError: if the element, or the requested family for it,
            is not in the table.
    """
    name = identifier.strip()
    parts = name.replace("\\", "/").split("/")
    family = functional.lower() if functional is not None else None
    if family is None and len(parts) > 1 and parts[-2].lower() in ("lda", "pbe", "pade"):
        family = parts[-2].lower()
    stem = parts[-1]
    if stem.endswith(".hgh") or stem.endswith(".gth"):
        stem = stem[:-4]
    tokens = stem.split("-")
    symbol = tokens[0].capitalize()
    if family is None and "pbe" in (t.lower() for t in tokens[1:]):
        family = "pbe"
    if family in (None, "pade"):
        family = "lda"

    psp = _HGH_DATABASE.get((symbol, family))
    if psp is None:
        families = sorted(f for (sym, f) in _HGH_DATABASE if sym == symbol)
        if families:
            raise ConfigurationError(
                f"No {family.upper()} HGH parameters for {symbol} (available: "
                f"{', '.join(families)}); pass the pseudopotentials explicitly"
            )
        raise ConfigurationError(
            f"HGH parameters not available for '{identifier}'. "
            f"Available: {available_pseudopotentials()}"
        )

    # Charge requested through a '-qN' suffix must match the table
    for t in tokens[1:]:
        if t.startswith("q") and t[1:].isdigit() and int(t[1:]) != psp.Zion:
            raise ConfigurationError(
                f"Pseudopotential '{identifier}' requests {t[1:]} valence electrons, "
                f"table has Zion={psp.Zion} for {symbol}"
            )

    return PspHgh(symbol=psp.symbol, Zion=psp.Zion, rloc=psp.rloc, cloc=list(psp.cloc),
                  rp=list(psp.rp), h=[hl.copy() for hl in psp.h],
                  functional=psp.functional, identifier=identifier)
