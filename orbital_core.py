"""
Non-relativistic orbital densities: hydrogenic closed forms, tabulated LDA /
PSLibrary radial functions and two-state superpositions.

PHYSICS SCOPE:
- Analytic hydrogenic eigenstates (associated Laguerre radial part)
- Tabulated radial functions interpolated linearly, zero outside the table
- Static densities and quasi-static two-state superpositions
- No many-body solution, no time integration of the Schrödinger equation

UNITS: Hartree atomic units (ℏ = m_e = e = a₀ = 1)
CONVENTIONS:
- Spherical harmonics carry the Condon-Shortley phase (scipy convention)
- Real harmonics: m > 0 → √2·Re Y_l|m|, m < 0 → √2·Im Y_l|m|, m = 0 → Y_l0
- Hydrogenic energies E_n = -Z²/(2n²)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from math import factorial as math_factorial
from typing import List, Literal, Optional, Tuple, Union
import logging

import numpy as np
from numpy.typing import NDArray
from scipy.integrate import cumulative_trapezoid
from scipy.special import eval_genlaguerre, sph_harm_y

from element_tables import (
    ElementTables,
    RadialTable,
    occupied_orbitals,
    orbital_label,
    valence_orbitals,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ArrayC = NDArray[np.complex128]
ArrayR = NDArray[np.float64]

STATIC_DELTA_E = 1e-6
SQRT2 = np.sqrt(2.0)


class OrbitalError(Exception):
    """Base class for errors raised by the density engine."""


class InvalidQuantumState(OrbitalError, ValueError):
    """n, l, m or Z outside their allowed ranges."""


class InvalidRequest(OrbitalError, ValueError):
    """Request parameters (mode, mix, count, radius) that cannot be honoured."""


class UnsupportedState(OrbitalError, LookupError):
    """No radial data for the requested state and no hydrogenic fallback."""


class SamplingExhausted(RuntimeWarning):
    """Angular rejection gave up on a noticeable share of the requested points."""


class Basis(str, Enum):
    COMPLEX = "complex"
    REAL = "real"

    @classmethod
    def parse(cls, value: Union[str, "Basis", None]) -> "Basis":
        if isinstance(value, Basis):
            return value
        if value is not None and str(value).strip().lower() == "real":
            return cls.REAL
        return cls.COMPLEX


def _is_int(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


@dataclass(frozen=True)
class QuantumState:
    """Hydrogen-like quantum numbers (n, l, m) for nuclear charge Z."""

    n: int
    l: int
    m: int = 0
    Z: int = 1

    def __post_init__(self) -> None:
        for name in ("n", "l", "m", "Z"):
            if not _is_int(getattr(self, name)):
                raise InvalidQuantumState(f"{name} must be an integer, got {getattr(self, name)!r}")
        if self.n < 1:
            raise InvalidQuantumState(f"n must be ≥ 1, got n={self.n}")
        if not 0 <= self.l < self.n:
            raise InvalidQuantumState(f"l must satisfy 0 ≤ l < n={self.n}, got l={self.l}")
        if abs(self.m) > self.l:
            raise InvalidQuantumState(f"|m| must be ≤ l={self.l}, got m={self.m}")
        if self.Z < 1:
            raise InvalidQuantumState(f"Z must be ≥ 1, got Z={self.Z}")

    @property
    def label(self) -> str:
        return orbital_label(self.n, self.l)

    def energy(self) -> float:
        return hydrogenic_energy(self.n, self.Z)


def hydrogenic_energy(n: int, Z: int = 1) -> float:
    """Bohr level E_n = -Z²/(2n²) in Hartree."""
    return -0.5 * float(Z) ** 2 / float(n) ** 2


def hydrogenic_radial(n: int, l: int, r: ArrayR, Z: int = 1) -> ArrayR:
    """
    Normalised hydrogenic radial function R_nl(r).

    R_nl = N ρ^l e^{-ρ/2} L^{2l+1}_{n-l-1}(ρ),  ρ = 2Zr/n
    N    = sqrt((2Z/n)³ (n-l-1)! / (2n (n+l)!))
    """
    r = np.asarray(r, dtype=np.float64)
    rho = 2.0 * Z * r / n
    norm = np.sqrt(
        (2.0 * Z / n) ** 3 * math_factorial(n - l - 1) / (2.0 * n * math_factorial(n + l))
    )
    n_r = n - l - 1
    L = np.ones_like(rho) if n_r == 0 else eval_genlaguerre(n_r, 2 * l + 1, rho)
    rho_power = np.power(rho, l) if l > 0 else np.ones_like(rho)
    R = norm * np.exp(-rho / 2.0) * rho_power * L
    return np.where(r >= 0.0, R, 0.0)


@dataclass(frozen=True)
class RadialModel:
    """R(r) for one state, either closed-form hydrogenic or interpolated from a table."""

    n: int
    l: int
    Z: int = 1
    table: Optional[RadialTable] = None

    @classmethod
    def hydrogenic(cls, n: int, l: int, Z: int = 1) -> "RadialModel":
        QuantumState(n, l, 0, Z)
        return cls(n=n, l=l, Z=Z)

    @classmethod
    def from_table(cls, table: RadialTable) -> "RadialModel":
        if len(table) < 2:
            raise UnsupportedState(f"radial table {table.label} holds no usable data")
        return cls(n=table.n, l=table.l, table=table)

    @classmethod
    def for_state(cls, element: ElementTables, state: QuantumState) -> "RadialModel":
        table = element.orbital(state.n, state.l)
        if table is None:
            raise UnsupportedState(
                f"{element.symbol}: no {element.source_label} data for {state.label}"
            )
        return cls.from_table(table)

    @property
    def tabulated(self) -> bool:
        return self.table is not None

    def R(self, r: ArrayR) -> ArrayR:
        r = np.asarray(r, dtype=np.float64)
        if self.table is None:
            return hydrogenic_radial(self.n, self.l, r, self.Z)
        values = np.interp(r, self.table.r, self.table.values, left=0.0, right=0.0)
        if self.table.kind == "chi":
            r_safe = np.where(r > 1e-12, r, 1.0)
            values = np.where(r > 1e-12, values / r_safe, 0.0)
        return values

    def marginal(self, r: ArrayR) -> ArrayR:
        """Radial probability density P(r) = r² R(r)² (χ(r)² for chi tables)."""
        r = np.asarray(r, dtype=np.float64)
        if self.table is not None and self.table.kind == "chi":
            chi = np.interp(r, self.table.r, self.table.values, left=0.0, right=0.0)
            return chi * chi
        R = self.R(r)
        return r * r * R * R

    def extent(self, tol: float = 1e-6) -> float:
        """Radius beyond which the remaining radial probability is below ``tol``."""
        if self.table is not None:
            return self.table.r_max

        r_hi = (3.0 * self.n**2 + 20.0 * self.n) / self.Z
        rs = np.linspace(0.0, r_hi, 4000)
        cdf = cumulative_trapezoid(self.marginal(rs), rs, initial=0.0)
        total = cdf[-1]
        if total <= 0.0:
            return 0.0
        idx = int(np.searchsorted(cdf / total, 1.0 - tol))
        return float(rs[min(idx, rs.size - 1)])

    def grid(self, r_max: float, steps: int = 800) -> ArrayR:
        """Integration abscissae on [0, r_max], ending exactly at r_max when data reaches it."""
        if self.table is None:
            return np.linspace(0.0, float(r_max), max(int(steps), 2))

        r = self.table.r
        inside = r[r < r_max]
        if r_max <= self.table.r_max:
            inside = np.append(inside, float(r_max))
        return np.asarray(inside, dtype=np.float64)


@lru_cache(maxsize=256)
def _theta_max_density(l: int, m_abs: int, steps: int) -> float:
    theta = np.linspace(0.0, np.pi, max(int(steps), 2) + 1)
    Y = sph_harm_y(l, m_abs, theta, np.zeros_like(theta))
    return float(np.max(np.abs(Y) ** 2))


@dataclass(frozen=True)
class AngularModel:
    """Angular part Y_lm in the complex or the real (textbook lobe) basis."""

    l: int
    m: int = 0
    basis: Basis = Basis.COMPLEX

    @classmethod
    def isotropic(cls) -> "AngularModel":
        return cls(0, 0, Basis.COMPLEX)

    @property
    def is_isotropic(self) -> bool:
        return self.l == 0

    def amplitude(self, theta: ArrayR, phi: ArrayR) -> ArrayC:
        theta = np.asarray(theta, dtype=np.float64)
        phi = np.asarray(phi, dtype=np.float64)
        if self.basis is Basis.COMPLEX or self.m == 0:
            return np.asarray(sph_harm_y(self.l, self.m, theta, phi), dtype=np.complex128)

        Y = sph_harm_y(self.l, abs(self.m), theta, phi)
        part = np.real(Y) if self.m > 0 else np.imag(Y)
        return (SQRT2 * part).astype(np.complex128)

    def density(self, theta: ArrayR, phi: ArrayR) -> ArrayR:
        Y = self.amplitude(theta, phi)
        return (Y.real * Y.real + Y.imag * Y.imag).astype(np.float64)

    def max_density(self, steps: int = 720) -> float:
        """
        Upper bound of ``density`` over the sphere.

        θ is scanned on a fine grid. The φ dependence of the real basis is
        cos²(mφ) or sin²(mφ) times 2|Y_l|m||², so its bound is exact.
        """
        peak = _theta_max_density(self.l, abs(self.m), steps)
        if self.basis is Basis.REAL and self.m != 0:
            peak *= 2.0
        return max(peak, 1e-30)


@dataclass(frozen=True)
class DensityTerm:
    weight: float
    radial: RadialModel
    angular: AngularModel


@dataclass(frozen=True)
class Total:
    element: ElementTables


@dataclass(frozen=True)
class Valence:
    element: ElementTables
    style: Literal["spherical", "orbitals"] = "spherical"


@dataclass(frozen=True)
class SingleOrbital:
    state: QuantumState
    basis: Basis = Basis.COMPLEX
    table: Optional[RadialTable] = None


@dataclass(frozen=True)
class Superposition:
    state_a: QuantumState
    state_b: QuantumState
    mix: float = 0.5
    time: float = 0.0
    basis: Basis = Basis.COMPLEX
    table_a: Optional[RadialTable] = None
    table_b: Optional[RadialTable] = None
    delta_e: Optional[float] = None


DensitySpec = Union[Total, Valence, SingleOrbital, Superposition]


@dataclass
class DensityFunction:
    """
    Scalar (or complex-amplitude) field over 3-D space built from a DensitySpec.

    ``terms`` always lists the separable pieces weight·R(r)²·|Y(θ,φ)|²; for a
    superposition they are the two pure states with weights mix and 1-mix,
    and ``density`` adds the interference term on top.
    """

    kind: Literal["total", "valence", "orbital", "superposition"]
    terms: List[DensityTerm]
    basis: Basis = Basis.COMPLEX
    mix: Optional[float] = None
    time: float = 0.0
    delta_e: float = 0.0
    notes: List[str] = field(default_factory=list)

    @property
    def has_amplitude(self) -> bool:
        return self.kind in ("orbital", "superposition")

    @property
    def static(self) -> bool:
        """True when the density cannot change with ``time``."""
        return self.kind != "superposition" or abs(self.delta_e) < STATIC_DELTA_E

    def coefficients(self) -> Tuple[float, complex]:
        """Superposition coefficients a and b·exp(-iΔE·t)."""
        mix = 1.0 if self.mix is None else float(self.mix)
        a = np.sqrt(mix)
        b = np.sqrt(1.0 - mix)
        return float(a), complex(b * np.exp(-1j * self.delta_e * self.time))

    def component_amplitudes(
        self, r: ArrayR, theta: ArrayR, phi: ArrayR
    ) -> Tuple[ArrayC, ...]:
        """Unweighted ψ_i = R_i(r)·Y_i(θ,φ) for every term."""
        return tuple(
            term.radial.R(r) * term.angular.amplitude(theta, phi) for term in self.terms
        )

    def amplitude(self, r: ArrayR, theta: ArrayR, phi: ArrayR) -> Optional[ArrayC]:
        if self.kind == "orbital":
            return self.component_amplitudes(r, theta, phi)[0]
        if self.kind == "superposition":
            psi_a, psi_b = self.component_amplitudes(r, theta, phi)
            a, b_t = self.coefficients()
            return a * psi_a + b_t * psi_b
        return None

    def density(self, r: ArrayR, theta: ArrayR, phi: ArrayR) -> ArrayR:
        r = np.asarray(r, dtype=np.float64)
        if self.has_amplitude:
            psi = self.amplitude(r, theta, phi)
            return (psi.real * psi.real + psi.imag * psi.imag).astype(np.float64)

        out = np.zeros(np.broadcast(r, theta, phi).shape, dtype=np.float64)
        for term in self.terms:
            R = term.radial.R(r)
            out += term.weight * R * R * term.angular.density(theta, phi)
        return out

    def radial_marginal(self, r: ArrayR) -> ArrayR:
        """Σ weight_i · r² R_i(r)², the angular-integrated density of the separable terms."""
        r = np.asarray(r, dtype=np.float64)
        out = np.zeros_like(r)
        for term in self.terms:
            out += term.weight * term.radial.marginal(r)
        return out


def _radial_for(state: QuantumState, table: Optional[RadialTable]) -> RadialModel:
    if table is None:
        return RadialModel.hydrogenic(state.n, state.l, state.Z)
    if table.l != state.l:
        raise UnsupportedState(
            f"table {table.label} has l={table.l} but the state asks for l={state.l}"
        )
    return RadialModel.from_table(table)


def _aggregate_terms(
    selection: List[Tuple[RadialTable, float]], lobes: bool
) -> List[DensityTerm]:
    terms = []
    for table, occ in selection:
        # Tabulated shells are not m-resolved: lobe mode projects every shell on m = 0.
        angular = AngularModel(table.l, 0) if lobes else AngularModel.isotropic()
        terms.append(DensityTerm(occ, RadialModel.from_table(table), angular))
    return terms


def build_density(spec: DensitySpec) -> DensityFunction:
    """Compose RadialModel × AngularModel for the active DensitySpec variant."""
    if isinstance(spec, Total):
        selection = occupied_orbitals(spec.element)
        if not selection:
            raise UnsupportedState(f"{spec.element.symbol}: no occupied orbitals in dataset")
        return DensityFunction("total", _aggregate_terms(selection, lobes=False))

    if isinstance(spec, Valence):
        if spec.style not in ("spherical", "orbitals"):
            raise InvalidRequest(f"unknown valence style {spec.style!r}")
        selection, reason = valence_orbitals(spec.element)
        notes = []
        if not selection:
            notes.append(reason or "valence set unavailable; using total density")
            selection = occupied_orbitals(spec.element)
        if not selection:
            raise UnsupportedState(f"{spec.element.symbol}: no occupied orbitals in dataset")
        terms = _aggregate_terms(selection, lobes=spec.style == "orbitals")
        return DensityFunction("valence", terms, notes=notes)

    if isinstance(spec, SingleOrbital):
        radial = _radial_for(spec.state, spec.table)
        angular = AngularModel(spec.state.l, spec.state.m, spec.basis)
        return DensityFunction("orbital", [DensityTerm(1.0, radial, angular)], basis=spec.basis)

    if isinstance(spec, Superposition):
        if not 0.0 <= spec.mix <= 1.0:
            raise InvalidRequest(f"mix must lie in [0, 1], got {spec.mix}")
        delta_e = spec.delta_e
        if delta_e is None:
            delta_e = spec.state_b.energy() - spec.state_a.energy()
        terms = [
            DensityTerm(
                spec.mix,
                _radial_for(spec.state_a, spec.table_a),
                AngularModel(spec.state_a.l, spec.state_a.m, spec.basis),
            ),
            DensityTerm(
                1.0 - spec.mix,
                _radial_for(spec.state_b, spec.table_b),
                AngularModel(spec.state_b.l, spec.state_b.m, spec.basis),
            ),
        ]
        return DensityFunction(
            "superposition",
            terms,
            basis=spec.basis,
            mix=float(spec.mix),
            time=float(spec.time),
            delta_e=float(delta_e),
        )

    raise InvalidRequest(f"unknown density spec {type(spec).__name__}")
