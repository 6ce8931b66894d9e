"""
Point-cloud sampling of orbital densities for 3-D viewers.

IMPORTANT:
- The physics (radial functions, harmonics, superposition amplitudes) lives in
  orbital_core.py. This module only turns a DensityFunction into a finite set
  of points, colours them and packages the result for the HTTP layer.
- Sampling is deterministic for a given numpy Generator state. Nothing here
  reads the clock; the superposition time is always supplied by the caller.

Algorithm:
1. Radial CDF from the angular-integrated marginal (trapezoid rule).
2. r by inverse-CDF lookup, (θ, φ) by rejection against the known angular
   maximum, with a per-point retry cap. Exhausted points are dropped and counted.
3. Superpositions: the two pure states form a mixture proposal, accepted with
   probability |ψ|² / (2·(mix|ψ_A|² + (1-mix)|ψ_B|²)) ≤ 1.

PERFORMANCE:
- Numba JIT kernels for the CDF build and the inverse-CDF binary search
- Vectorised NumPy rejection rounds
- Shared thread pool so callers can keep sampling off their request path
"""

from __future__ import annotations

import os


def _threads_from_env() -> int:
    """Worker count from ORBITAL_NUM_THREADS; unset, non-numeric or non-positive means cpu_count."""
    try:
        requested = int(os.environ.get("ORBITAL_NUM_THREADS", "").strip())
    except ValueError:
        requested = 0
    return requested if requested > 0 else (os.cpu_count() or 4)


_num_threads = _threads_from_env()

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple
import atexit
import logging
import threading
import warnings

import numba
import numpy as np
from numba import jit
from numpy.typing import NDArray

from element_tables import (
    ElementTables,
    available_orbitals,
    select_orbital,
    select_orbital_pair,
    symbol_for_z,
)
from orbital_core import (
    STATIC_DELTA_E,
    AngularModel,
    Basis,
    DensityFunction,
    InvalidRequest,
    QuantumState,
    SamplingExhausted,
    SingleOrbital,
    Superposition,
    Total,
    UnsupportedState,
    Valence,
    build_density,
)

logger = logging.getLogger(__name__)

ArrayC = NDArray[np.complex128]
ArrayR = NDArray[np.float64]

MODES = ("total", "valence", "orbital", "superposition")
COLOR_MODES = ("radial", "phase")

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def get_executor() -> ThreadPoolExecutor:
    """Get or create the shared sampling thread pool."""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=_num_threads, thread_name_prefix="orbital-sampler"
            )
    return _executor


def _shutdown_executor():
    """Clean shutdown of thread pool on exit (only if it was created)."""
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=False)
            _executor = None


atexit.register(_shutdown_executor)


@jit(nopython=True, cache=True)
def _cumulative_trapezoid_fast(rs: ArrayR, p: ArrayR, r_max: float) -> Tuple[ArrayR, float]:
    """Unnormalised cumulative integral of p over rs, ignoring segments past r_max."""
    n = rs.shape[0]
    cdf = np.zeros(n, dtype=np.float64)
    total = 0.0
    for i in range(1, n):
        if rs[i] <= r_max:
            total += 0.5 * (p[i - 1] + p[i]) * (rs[i] - rs[i - 1])
        cdf[i] = total
    return cdf, total


@jit(nopython=True, cache=True)
def _inverse_cdf_fast(u: ArrayR, cdf: ArrayR, rs: ArrayR) -> ArrayR:
    """
    Map uniform draws through a normalised CDF.

    Binary search for the first bracket with cdf >= u, then linear
    interpolation inside it.
    """
    n = cdf.shape[0]
    out = np.empty(u.shape[0], dtype=np.float64)
    for k in range(u.shape[0]):
        target = u[k]
        left = 0
        right = n - 1
        while left < right:
            mid = (left + right) // 2
            if cdf[mid] < target:
                left = mid + 1
            else:
                right = mid

        if left == 0:
            out[k] = rs[0]
            continue

        c0 = cdf[left - 1]
        c1 = cdf[left]
        t = (target - c0) / (c1 - c0) if c1 > c0 else 0.0
        out[k] = rs[left - 1] + (rs[left] - rs[left - 1]) * t
    return out


@dataclass
class SamplerConfig:
    """Numerical policy knobs for the sampler (none of these are physics)."""

    radial_steps: int = 800
    angular_scan_steps: int = 720
    max_angular_retries: int = 500
    max_attempt_factor: int = 200
    drop_warning_fraction: float = 0.1
    extent_tolerance: float = 1e-6


@dataclass(frozen=True)
class RadialCDF:
    """Normalised cumulative radial distribution on [rs[0], r_max]."""

    rs: ArrayR
    cdf: ArrayR
    mass: float

    @classmethod
    def build(cls, rs: ArrayR, marginal: ArrayR, r_max: float) -> "RadialCDF":
        rs = np.ascontiguousarray(rs, dtype=np.float64)
        p = np.ascontiguousarray(np.clip(marginal, 0.0, None), dtype=np.float64)
        if rs.size < 2:
            return cls(rs, np.zeros_like(rs), 0.0)
        cdf, total = _cumulative_trapezoid_fast(rs, p, float(r_max))
        if total > 0.0:
            cdf = cdf / total
        return cls(rs, cdf, float(total))

    @property
    def empty(self) -> bool:
        return not self.mass > 0.0

    def invert(self, u: ArrayR) -> ArrayR:
        return _inverse_cdf_fast(np.ascontiguousarray(u, dtype=np.float64), self.cdf, self.rs)


@dataclass(frozen=True)
class Sample:
    """One drawn point: position, colour-ready scalar and optional sign."""

    position: Tuple[float, float, float]
    weight: float
    sign: Optional[int] = None
    phase: Optional[float] = None
    color: Optional[Tuple[float, float, float]] = None


def _lock(arr):
    if arr is not None:
        arr.setflags(write=False)
    return arr


@dataclass
class SampleSet:
    """
    Column-wise sample storage plus request metadata.

    Arrays are locked read-only on construction; use ``dataclasses.replace``
    to derive a new set (for instance with colours attached).
    """

    positions: ArrayR
    weights: ArrayR
    signs: Optional[NDArray[np.int8]] = None
    phases: Optional[ArrayR] = None
    colors: Optional[NDArray[np.float32]] = None
    psi_a: Optional[ArrayC] = None
    psi_b: Optional[ArrayC] = None
    mode: str = "orbital"
    source: str = "hydrogenic"
    count_requested: int = 0
    dropped: int = 0
    max_radius: float = 0.0
    degenerate: bool = False
    note: Optional[str] = None
    state: Optional[QuantumState] = None
    state_b: Optional[QuantumState] = None
    basis: Basis = Basis.COMPLEX
    selected_orbital: Optional[str] = None
    selected_orbital_b: Optional[str] = None
    mix: Optional[float] = None
    time: Optional[float] = None
    delta_e: Optional[float] = None
    static_density: Optional[bool] = None
    available_orbitals: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        for name in ("positions", "weights", "signs", "phases", "colors", "psi_a", "psi_b"):
            _lock(getattr(self, name))

    @classmethod
    def empty(cls, **metadata: Any) -> "SampleSet":
        return cls(
            positions=np.zeros((0, 3), dtype=np.float64),
            weights=np.zeros(0, dtype=np.float64),
            **metadata,
        )

    @property
    def count(self) -> int:
        return int(self.positions.shape[0])

    def __len__(self) -> int:
        return self.count

    def __getitem__(self, index: int) -> Sample:
        pos = self.positions[index]
        return Sample(
            position=(float(pos[0]), float(pos[1]), float(pos[2])),
            weight=float(self.weights[index]),
            sign=None if self.signs is None else int(self.signs[index]),
            phase=None if self.phases is None else float(self.phases[index]),
            color=None if self.colors is None else tuple(float(c) for c in self.colors[index]),
        )

    def __iter__(self) -> Iterator[Sample]:
        for i in range(self.count):
            yield self[i]

    def radii(self) -> ArrayR:
        return np.linalg.norm(self.positions, axis=1)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready payload for the HTTP layer."""

        def _pairs(psi):
            return None if psi is None else np.column_stack([psi.real, psi.imag]).tolist()

        st, st_b = self.state, self.state_b
        return {
            "n": st.n if st else None,
            "l": st.l if st else None,
            "m": st.m if st else None,
            "n2": st_b.n if st_b else None,
            "l2": st_b.l if st_b else None,
            "m2": st_b.m if st_b else None,
            "z": st.Z if st else None,
            "mode": self.mode,
            "source": self.source,
            "basis": self.basis.value,
            "count": self.count_requested,
            "produced": self.count,
            "dropped": self.dropped,
            "max_radius": self.max_radius,
            "degenerate": self.degenerate,
            "note": self.note,
            "samples": self.positions.tolist(),
            "weights": self.weights.tolist(),
            "signs": None if self.signs is None else self.signs.tolist(),
            "colors": None if self.colors is None else self.colors.tolist(),
            "available_orbitals": list(self.available_orbitals),
            "selected_orbital": self.selected_orbital,
            "selected_orbital_b": self.selected_orbital_b,
            "mix": self.mix,
            "time": self.time,
            "delta_e": self.delta_e,
            "static_density": self.static_density,
            "psi1": _pairs(self.psi_a),
            "psi2": _pairs(self.psi_b),
        }


def _to_cartesian(r: ArrayR, theta: ArrayR, phi: ArrayR) -> ArrayR:
    sin_th = np.sin(theta)
    return np.column_stack([r * sin_th * np.cos(phi), r * sin_th * np.sin(phi), r * np.cos(theta)])


def _sign_of(psi: ArrayC) -> NDArray[np.int8]:
    return np.where(np.real(psi) >= 0.0, 1, -1).astype(np.int8)


class Sampler:
    """
    Draws points distributed according to a DensityFunction.

    The random source is injected; a Sampler holds no other state, so one
    instance per request (or per worker) is safe to use concurrently with others.
    """

    def __init__(
        self, rng: Optional[np.random.Generator] = None, config: Optional[SamplerConfig] = None
    ) -> None:
        self.rng = rng if rng is not None else np.random.default_rng()
        self.config = config or SamplerConfig()

    def radial_cdf(self, density: DensityFunction, r_max: float, terms=None) -> RadialCDF:
        """CDF of the combined marginal Σ w_i r² R_i(r)² over [0, r_max]."""
        terms = density.terms if terms is None else terms
        grids = [t.radial.grid(r_max, self.config.radial_steps) for t in terms]
        rs = np.unique(np.concatenate(grids)) if len(grids) > 1 else grids[0]
        marginal = np.zeros_like(rs)
        for t in terms:
            marginal += t.weight * t.radial.marginal(rs)
        cdf = RadialCDF.build(rs, marginal, r_max)
        logger.debug(f"radial CDF: {rs.size} nodes, mass={cdf.mass:.4g}")
        return cdf

    def draw_angles(self, angular: AngularModel, k: int) -> Tuple[ArrayR, ArrayR, NDArray[np.bool_]]:
        """
        Rejection-sample k directions from the angular density.

        Returns θ, φ and a mask of points accepted within the retry cap.
        """
        rng = self.rng
        theta = np.empty(k, dtype=np.float64)
        phi = np.empty(k, dtype=np.float64)

        if angular.is_isotropic:
            theta[:] = np.arccos(rng.uniform(-1.0, 1.0, k))
            phi[:] = rng.uniform(0.0, 2.0 * np.pi, k)
            return theta, phi, np.ones(k, dtype=bool)

        peak = angular.max_density(self.config.angular_scan_steps)
        pending = np.arange(k)
        for _ in range(self.config.max_angular_retries):
            if pending.size == 0:
                break
            th = np.arccos(rng.uniform(-1.0, 1.0, pending.size))
            ph = rng.uniform(0.0, 2.0 * np.pi, pending.size)
            accept = rng.random(pending.size) * peak < angular.density(th, ph)
            theta[pending[accept]] = th[accept]
            phi[pending[accept]] = ph[accept]
            pending = pending[~accept]

        ok = np.ones(k, dtype=bool)
        ok[pending] = False
        return theta, phi, ok

    def sample(
        self,
        density: DensityFunction,
        count: int,
        r_max: float,
        *,
        want_sign: bool = False,
        animated: bool = False,
    ) -> SampleSet:
        """Draw up to ``count`` points from ``density`` inside radius ``r_max``."""
        if count < 0:
            raise InvalidRequest(f"count must be ≥ 0, got {count}")
        if not r_max > 0.0:
            raise InvalidRequest(f"max radius must be positive, got {r_max}")

        if density.kind == "superposition":
            return self._sample_superposition(density, count, r_max, want_sign, animated)
        return self._sample_mixture(density, count, r_max, want_sign)

    def _empty(self, density: DensityFunction, count: int, r_max: float) -> SampleSet:
        logger.info(f"{density.kind} density vanishes inside r ≤ {r_max:g}; returning no samples")
        return SampleSet.empty(
            mode=density.kind,
            count_requested=count,
            max_radius=float(r_max),
            degenerate=True,
            basis=density.basis,
        )

    def _sample_mixture(
        self, density: DensityFunction, count: int, r_max: float, want_sign: bool
    ) -> SampleSet:
        groups: Dict[AngularModel, list] = {}
        for term in density.terms:
            groups.setdefault(term.angular, []).append(term)

        angulars = list(groups)
        cdfs = [self.radial_cdf(density, r_max, groups[a]) for a in angulars]
        masses = np.array([c.mass for c in cdfs], dtype=np.float64)
        if not masses.sum() > 0.0:
            return self._empty(density, count, r_max)

        rng = self.rng
        choice = rng.choice(len(angulars), size=count, p=masses / masses.sum())
        r = np.empty(count, dtype=np.float64)
        theta = np.empty(count, dtype=np.float64)
        phi = np.empty(count, dtype=np.float64)
        ok = np.ones(count, dtype=bool)
        for gi, (angular, cdf) in enumerate(zip(angulars, cdfs)):
            idx = np.flatnonzero(choice == gi)
            if idx.size == 0:
                continue
            r[idx] = cdf.invert(rng.random(idx.size))
            theta[idx], phi[idx], ok[idx] = self.draw_angles(angular, idx.size)

        dropped = int(count - ok.sum())
        r, theta, phi = r[ok], theta[ok], phi[ok]

        signs = phases = None
        psi = density.amplitude(r, theta, phi)
        if psi is None:
            weights = density.density(r, theta, phi)
        else:
            weights = psi.real.copy() if density.basis is Basis.REAL else np.abs(psi) ** 2
            phases = np.angle(psi)
            if want_sign:
                signs = _sign_of(psi)

        return SampleSet(
            positions=_to_cartesian(r, theta, phi),
            weights=np.asarray(weights, dtype=np.float64),
            signs=signs,
            phases=phases,
            mode=density.kind,
            count_requested=count,
            dropped=dropped,
            max_radius=float(r_max),
            basis=density.basis,
        )

    def _sample_superposition(
        self,
        density: DensityFunction,
        count: int,
        r_max: float,
        want_sign: bool,
        animated: bool,
    ) -> SampleSet:
        term_a, term_b = density.terms
        cdf_a = self.radial_cdf(density, r_max, [term_a])
        cdf_b = self.radial_cdf(density, r_max, [term_b])
        mix = float(density.mix)
        # Each CDF is normalised on its own; weighting by truncated mass keeps
        # the proposal proportional to mix|ψ_A|² + (1-mix)|ψ_B|².
        w = np.array([mix * cdf_a.mass, (1.0 - mix) * cdf_b.mass])
        if not w.sum() > 0.0:
            return self._empty(density, count, r_max)
        p_a = w[0] / w.sum()
        a, b_t = density.coefficients()

        rng = self.rng
        max_attempts = max(count, 1) * self.config.max_attempt_factor
        attempts = 0
        dropped = 0
        chunks: List[Tuple[ArrayR, ...]] = []
        produced = 0
        while produced < count and attempts < max_attempts:
            batch = min(max(2 * (count - produced), 256), max_attempts - attempts)
            attempts += batch

            pick_a = rng.random(batch) < p_a
            r = np.empty(batch, dtype=np.float64)
            theta = np.empty(batch, dtype=np.float64)
            phi = np.empty(batch, dtype=np.float64)
            ok = np.ones(batch, dtype=bool)
            for mask, cdf, term in ((pick_a, cdf_a, term_a), (~pick_a, cdf_b, term_b)):
                idx = np.flatnonzero(mask)
                if idx.size == 0:
                    continue
                r[idx] = cdf.invert(rng.random(idx.size))
                theta[idx], phi[idx], ok[idx] = self.draw_angles(term.angular, idx.size)
            dropped += int(batch - ok.sum())

            psi_a, psi_b = density.component_amplitudes(r, theta, phi)
            psi = a * psi_a + b_t * psi_b
            prob = np.abs(psi) ** 2
            proposal = mix * np.abs(psi_a) ** 2 + (1.0 - mix) * np.abs(psi_b) ** 2
            valid = ok & (proposal > 0.0)
            u = rng.random(batch)
            if animated:
                accept = valid
            else:
                ratio = np.zeros(batch, dtype=np.float64)
                ratio[valid] = np.clip(prob[valid] / (2.0 * proposal[valid]), 0.0, 1.0)
                accept = valid & (u < ratio)

            idx = np.flatnonzero(accept)[: count - produced]
            produced += idx.size
            chunks.append((r[idx], theta[idx], phi[idx], psi_a[idx], psi_b[idx], psi[idx]))

        if produced < count:
            logger.warning(
                f"superposition sampling stopped after {attempts} proposals with {produced}/{count} points"
            )
        logger.debug(f"superposition acceptance {produced}/{attempts}")

        if not chunks:
            empty_r = np.zeros(0, dtype=np.float64)
            empty_c = np.zeros(0, dtype=np.complex128)
            chunks.append((empty_r, empty_r, empty_r, empty_c, empty_c, empty_c))
        r, theta, phi, psi_a, psi_b, psi = (np.concatenate(col) for col in zip(*chunks))
        return SampleSet(
            positions=_to_cartesian(r, theta, phi),
            weights=psi.real.astype(np.float64),
            signs=_sign_of(psi) if want_sign else None,
            phases=np.angle(psi),
            psi_a=a * psi_a if animated else None,
            psi_b=np.sqrt(1.0 - mix) * psi_b if animated else None,
            mode=density.kind,
            count_requested=count,
            dropped=dropped,
            max_radius=float(r_max),
            basis=density.basis,
            mix=mix,
            time=density.time,
            delta_e=density.delta_e,
            static_density=density.static,
        )


class ColorEncoder:
    """
    Per-sample RGB colours in [0, 1].

    Modes:
    - "radial": distance from the nucleus through blue → cyan → green → yellow
    - "phase": red for positive / blue for negative amplitude; a continuous
      phase blends between them. Density-only samples get a neutral grey.
    """

    RADIAL_STOPS = np.array(
        [
            (0.0, 0.0, 1.0),
            (0.0, 1.0, 1.0),
            (0.0, 1.0, 0.0),
            (1.0, 1.0, 0.0),
        ],
        dtype=np.float64,
    )
    POSITIVE = (1.0, 0.0, 0.0)
    NEGATIVE = (0.0, 0.0, 1.0)
    NEUTRAL = (0.8, 0.8, 0.8)

    def __init__(self, mode: Literal["radial", "phase"] = "radial") -> None:
        if mode not in COLOR_MODES:
            raise InvalidRequest(f"unknown color mode {mode!r}; expected one of {COLOR_MODES}")
        self.mode = mode

    @classmethod
    def radial(cls, distances: ArrayR, r_max: float) -> NDArray[np.float32]:
        t = np.asarray(distances, dtype=np.float64) / r_max if r_max > 0.0 else np.zeros_like(distances)
        t = np.clip(t, 0.0, 1.0)
        stops = np.linspace(0.0, 1.0, len(cls.RADIAL_STOPS))
        rgb = np.column_stack(
            [np.interp(t, stops, cls.RADIAL_STOPS[:, c]) for c in range(3)]
        )
        return rgb.astype(np.float32)

    @classmethod
    def phase(
        cls,
        count: int,
        phases: Optional[ArrayR] = None,
        signs: Optional[NDArray[np.int8]] = None,
    ) -> NDArray[np.float32]:
        pos = np.array(cls.POSITIVE)
        neg = np.array(cls.NEGATIVE)
        if phases is not None:
            t = 0.5 * (1.0 + np.cos(np.asarray(phases, dtype=np.float64)))
        elif signs is not None:
            t = (np.asarray(signs) >= 0).astype(np.float64)
        else:
            return np.tile(np.array(cls.NEUTRAL, dtype=np.float32), (count, 1))
        rgb = t[:, None] * pos + (1.0 - t[:, None]) * neg
        return rgb.astype(np.float32)

    def encode(self, samples: SampleSet) -> NDArray[np.float32]:
        if self.mode == "radial":
            return self.radial(samples.radii(), samples.max_radius)
        return self.phase(samples.count, samples.phases, samples.signs)

    def color_of(self, sample: Sample, r_max: float) -> Tuple[float, float, float]:
        """Colour of a single sample; same mapping as ``encode``."""
        if self.mode == "radial":
            rgb = self.radial(np.array([np.linalg.norm(sample.position)]), r_max)[0]
        else:
            phases = None if sample.phase is None else np.array([sample.phase])
            signs = None if sample.sign is None else np.array([sample.sign])
            rgb = self.phase(1, phases, signs)[0]
        return float(rgb[0]), float(rgb[1]), float(rgb[2])


def _hydrogen_like_name(Z: int) -> str:
    symbol = symbol_for_z(Z)
    return f"{symbol}, Z={Z}" if symbol else f"Z={Z}"


def _clamp_m(m: int, l: int) -> int:
    return int(min(max(m, -l), l))


def _warn_if_exhausted(result: SampleSet, config: SamplerConfig) -> None:
    if result.count_requested <= 0 or result.dropped == 0:
        return
    fraction = result.dropped / result.count_requested
    if fraction > config.drop_warning_fraction:
        warnings.warn(
            f"angular rejection exhausted its retry cap for {result.dropped} of "
            f"{result.count_requested} points ({fraction:.1%}); returning a partial set",
            SamplingExhausted,
        )


def sample(
    mode: str,
    n: int = 2,
    l: int = 1,
    m: int = 0,
    Z: int = 1,
    count: int = 50_000,
    max_radius: float = 20.0,
    mix: float = 0.5,
    time: float = 0.0,
    basis: str = "complex",
    color_mode: Literal["radial", "phase"] = "radial",
    want_sign: bool = False,
    *,
    n2: Optional[int] = None,
    l2: Optional[int] = None,
    m2: Optional[int] = None,
    element: Optional[ElementTables] = None,
    valence_style: Literal["spherical", "orbitals"] = "spherical",
    animated: bool = False,
    closest_fallback: bool = True,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
    config: Optional[SamplerConfig] = None,
) -> SampleSet:
    """
    Sample one density request end to end.

    ``element`` carries the tabulated data for LDA / PSLibrary sources; when it
    is omitted, orbital and superposition requests fall back to hydrogenic
    orbitals scaled for Z, while total and valence requests raise
    UnsupportedState. Colours are attached according to ``color_mode``.
    """
    view = str(mode).strip().lower()
    if view not in MODES:
        raise InvalidRequest(f"unknown mode {mode!r}; expected one of {MODES}")
    if color_mode not in COLOR_MODES:
        raise InvalidRequest(f"unknown color mode {color_mode!r}; expected one of {COLOR_MODES}")
    if count < 0:
        raise InvalidRequest(f"count must be ≥ 0, got {count}")
    if not max_radius > 0.0:
        raise InvalidRequest(f"max radius must be positive, got {max_radius}")
    if not 0.0 <= mix <= 1.0:
        raise InvalidRequest(f"mix must lie in [0, 1], got {mix}")

    state = QuantumState(n, l, m, Z)
    state_b = None
    if view == "superposition":
        state_b = QuantumState(n if n2 is None else n2, l if l2 is None else l2, 0 if m2 is None else m2, Z)

    basis_ = Basis.parse(basis)
    config = config or SamplerConfig()
    sampler = Sampler(rng if rng is not None else np.random.default_rng(seed), config)

    if view in ("total", "valence"):
        result = _sample_aggregate(sampler, view, state, element, count, max_radius, valence_style)
    elif view == "orbital":
        result = _sample_orbital(
            sampler, state, basis_, element, count, max_radius, want_sign, closest_fallback
        )
    else:
        result = _sample_superposition(
            sampler, state, state_b, basis_, element, count, max_radius, mix, time,
            want_sign, animated, closest_fallback,
        )

    _warn_if_exhausted(result, config)
    return replace(result, colors=ColorEncoder(color_mode).encode(result))


def _sample_aggregate(
    sampler: Sampler,
    view: str,
    state: QuantumState,
    element: Optional[ElementTables],
    count: int,
    max_radius: float,
    valence_style: str,
) -> SampleSet:
    if element is None:
        raise UnsupportedState(f"{view} density needs tabulated element data; no hydrogenic fallback")

    if view == "total":
        density = build_density(Total(element))
        note = f"{element.source_label} spherical total density ({element.total_electrons:.0f}e)"
    else:
        density = build_density(Valence(element, valence_style))
        if density.notes:
            note = density.notes[0]
        elif valence_style == "orbitals":
            note = f"{element.source_label} valence orbitals (m=0 projection)"
        else:
            note = f"{element.source_label} spherical valence density ({element.valence_electrons:.0f}e)"

    r_max = min(max_radius, element.r_max)
    logger.info(f"{element.symbol}: {view} density from {len(density.terms)} shells, r_max={r_max:g}")
    result = sampler.sample(density, count, r_max)
    return replace(
        result,
        source=element.source,
        note=note,
        state=state,
        available_orbitals=available_orbitals(element),
    )


def _sample_orbital(
    sampler: Sampler,
    state: QuantumState,
    basis: Basis,
    element: Optional[ElementTables],
    count: int,
    max_radius: float,
    want_sign: bool,
    closest_fallback: bool,
) -> SampleSet:
    if element is None:
        r_max = max_radius / state.Z
        density = build_density(SingleOrbital(state, basis))
        note = f"Hydrogenic {state.label}"
        if state.Z > 1:
            note += f" ({_hydrogen_like_name(state.Z)}) | radius scaled by 1/Z"
        extent = density.terms[0].radial.extent(sampler.config.extent_tolerance)
        if extent > r_max:
            logger.info(f"{state.label}: max radius {r_max:g} truncates the tail (extent {extent:.1f})")
        result = sampler.sample(density, count, r_max, want_sign=want_sign)
        return replace(result, source="hydrogenic", note=note, state=state, selected_orbital=state.label)

    if closest_fallback:
        match = select_orbital(element, state.n, state.l)
    else:
        table = element.orbital(state.n, state.l)
        match = (table, True) if table is not None else None
    if match is None:
        raise UnsupportedState(f"{element.symbol}: no {element.source_label} data for {state.label}")
    table, exact = match

    used = QuantumState(max(table.n, table.l + 1), table.l, _clamp_m(state.m, table.l), state.Z)
    if exact:
        note = f"{element.source_label} {table.label}"
    else:
        note = f"requested n/l not in dataset; using {table.label}"
        logger.info(f"{element.symbol}: {state.label} not tabulated, using {table.label}")

    density = build_density(SingleOrbital(used, basis, table))
    r_max = min(max_radius, element.r_max)
    result = sampler.sample(density, count, r_max, want_sign=want_sign)
    return replace(
        result,
        source=element.source,
        note=note,
        state=used,
        selected_orbital=table.label,
        available_orbitals=available_orbitals(element),
    )


def _sample_superposition(
    sampler: Sampler,
    state_a: QuantumState,
    state_b: QuantumState,
    basis: Basis,
    element: Optional[ElementTables],
    count: int,
    max_radius: float,
    mix: float,
    time: float,
    want_sign: bool,
    animated: bool,
    closest_fallback: bool,
) -> SampleSet:
    if element is None:
        density = build_density(Superposition(state_a, state_b, mix, time, basis))
        r_max = max_radius / state_a.Z
        note = "Hydrogenic superposition (time-dependent)"
        if density.static:
            note += " | same n -> no time evolution"
        if state_a.Z > 1:
            note += f" | hydrogenic approximation scaled by Z ({_hydrogen_like_name(state_a.Z)})"
        result = sampler.sample(density, count, r_max, want_sign=want_sign, animated=animated)
        return replace(
            result,
            source="hydrogenic",
            note=note,
            state=state_a,
            state_b=state_b,
            selected_orbital=state_a.label,
            selected_orbital_b=state_b.label,
        )

    if closest_fallback:
        pair = select_orbital_pair(element, state_a.n, state_a.l, state_b.n, state_b.l)
    else:
        ta, tb = element.orbital(state_a.n, state_a.l), element.orbital(state_b.n, state_b.l)
        pair = (ta, True, tb, True) if ta is not None and tb is not None else None
    if pair is None:
        raise UnsupportedState(f"{element.symbol}: superposition orbitals not available")
    table_a, exact_a, table_b, exact_b = pair

    used_a = QuantumState(max(table_a.n, table_a.l + 1), table_a.l, _clamp_m(state_a.m, table_a.l), state_a.Z)
    used_b = QuantumState(max(table_b.n, table_b.l + 1), table_b.l, _clamp_m(state_b.m, table_b.l), state_b.Z)
    e_a = element.eigenvalues.get((table_a.n, table_a.l))
    e_b = element.eigenvalues.get((table_b.n, table_b.l))
    delta_e = (e_b - e_a) if e_a is not None and e_b is not None else 0.0

    note = f"{element.source_label} superposition"
    if not (exact_a and exact_b):
        note += " (closest orbitals used)"
    if e_a is None or e_b is None:
        note += " | missing eigenvalues, static phase"
    if abs(delta_e) < STATIC_DELTA_E:
        note += " | degenerate energies, static density"

    density = build_density(
        Superposition(used_a, used_b, mix, time, basis, table_a, table_b, delta_e=delta_e)
    )
    r_max = min(max_radius, element.r_max)
    result = sampler.sample(density, count, r_max, want_sign=want_sign, animated=animated)
    return replace(
        result,
        source=element.source,
        note=note,
        state=used_a,
        state_b=used_b,
        selected_orbital=table_a.label,
        selected_orbital_b=table_b.label,
        available_orbitals=available_orbitals(element),
    )


def submit_sample(*args: Any, **kwargs: Any) -> Future:
    """Run ``sample`` on the shared thread pool; every call must bring its own seed or rng."""
    return get_executor().submit(sample, *args, **kwargs)


def get_performance_info() -> Dict[str, Any]:
    """Get information about the compiled kernels and the worker pool."""
    return {
        "numba_version": numba.__version__,
        "num_threads": _num_threads,
        "executor_started": _executor is not None,
    }
