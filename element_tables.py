"""
Read-only views of tabulated radial wavefunctions for multi-electron atoms.

The tables are produced by an external loader (OpenMX LDA ``.alog`` files or
PSLibrary ``.UPF`` pseudopotentials) and handed over already parsed. Nothing
here fetches or parses files; it only holds the numbers and answers
selection questions (occupied shells, valence shells, closest orbital).

Two radial conventions are supported:
- ``kind="R"``   values are R(r)            (OpenMX LDA radial wave functions)
- ``kind="chi"`` values are chi(r) = r R(r) (PSLibrary PP_CHI blocks)

Arrays are copied on construction and flagged read-only so that one table
can be shared by concurrent sampling calls. A reload must build a new
``ElementTables`` and swap the reference instead of mutating in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple
import logging

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

ArrayR = NDArray[np.float64]

L_LETTERS = "spdfghi"

ELEMENT_SYMBOLS: Tuple[str, ...] = (
    "H", "He", "Li", "Be", "B", "C", "N", "O", "F", "Ne",
    "Na", "Mg", "Al", "Si", "P", "S", "Cl", "Ar", "K", "Ca",
    "Sc", "Ti", "V", "Cr", "Mn", "Fe", "Co", "Ni", "Cu", "Zn",
    "Ga", "Ge", "As", "Se", "Br", "Kr", "Rb", "Sr", "Y", "Zr",
    "Nb", "Mo", "Tc", "Ru", "Rh", "Pd", "Ag", "Cd", "In", "Sn",
    "Sb", "Te", "I", "Xe", "Cs", "Ba", "La", "Ce", "Pr", "Nd",
    "Pm", "Sm", "Eu", "Gd", "Tb", "Dy", "Ho", "Er", "Tm", "Yb",
    "Lu", "Hf", "Ta", "W", "Re", "Os", "Ir", "Pt", "Au", "Hg",
    "Tl", "Pb", "Bi", "Po", "At", "Rn", "Fr", "Ra", "Ac", "Th",
    "Pa", "U", "Np", "Pu", "Am", "Cm", "Bk", "Cf", "Es", "Fm",
    "Md", "No", "Lr", "Rf", "Db", "Sg", "Bh", "Hs", "Mt", "Ds",
    "Rg", "Cn", "Nh", "Fl", "Mc", "Lv", "Ts", "Og",
)

SOURCE_LABELS: Dict[str, str] = {
    "openmx_lda": "OpenMX LDA",
    "pslibrary": "PSlibrary",
}


def orbital_label(n: int, l: int) -> str:
    """Spectroscopic label such as ``"3d"``."""
    letter = L_LETTERS[l] if 0 <= l < len(L_LETTERS) else "?"
    return f"{n}{letter}"


def symbol_for_z(z: int) -> Optional[str]:
    if 1 <= z <= len(ELEMENT_SYMBOLS):
        return ELEMENT_SYMBOLS[z - 1]
    return None


def _readonly(values: Any) -> ArrayR:
    arr = np.array(values, dtype=np.float64, copy=True).ravel()
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class RadialTable:
    """Ordered (r, amplitude) samples of one radial function."""

    n: int
    l: int
    r: ArrayR
    values: ArrayR
    kind: Literal["R", "chi"] = "R"
    label: str = ""

    def __post_init__(self) -> None:
        r = _readonly(self.r)
        v = _readonly(self.values)
        if r.shape != v.shape:
            raise ValueError(
                f"radial table {self.n},{self.l}: {r.size} radii but {v.size} values"
            )
        if r.size > 1 and np.any(np.diff(r) < 0.0):
            raise ValueError(f"radial table {self.n},{self.l}: radii must be ascending")
        if self.kind not in ("R", "chi"):
            raise ValueError(f"unknown radial table kind {self.kind!r}")
        object.__setattr__(self, "r", r)
        object.__setattr__(self, "values", v)
        if not self.label:
            object.__setattr__(self, "label", orbital_label(self.n, self.l))

    @property
    def r_max(self) -> float:
        return float(self.r[-1]) if self.r.size else 0.0

    def __len__(self) -> int:
        return int(self.r.size)


@dataclass(frozen=True)
class ElementTables:
    """All radial tables and shell data known for one element."""

    symbol: str
    orbitals: Tuple[RadialTable, ...]
    occupancy: Mapping[Tuple[int, int], float] = field(default_factory=dict)
    eigenvalues: Mapping[Tuple[int, int], float] = field(default_factory=dict)
    total_electrons: float = 0.0
    valence_electrons: Optional[float] = None
    source: Literal["openmx_lda", "pslibrary"] = "openmx_lda"

    def __post_init__(self) -> None:
        orbitals = tuple(sorted(self.orbitals, key=lambda o: (o.n, o.l)))
        object.__setattr__(self, "orbitals", orbitals)
        object.__setattr__(self, "occupancy", MappingProxyType(dict(self.occupancy)))
        object.__setattr__(self, "eigenvalues", MappingProxyType(dict(self.eigenvalues)))
        if self.valence_electrons is None:
            object.__setattr__(self, "valence_electrons", float(self.total_electrons))

    @property
    def r_max(self) -> float:
        return max((o.r_max for o in self.orbitals), default=0.0)

    @property
    def source_label(self) -> str:
        return SOURCE_LABELS.get(self.source, self.source)

    def orbital(self, n: int, l: int) -> Optional[RadialTable]:
        for orb in self.orbitals:
            if orb.n == n and orb.l == l:
                return orb
        return None


def occupied_orbitals(element: ElementTables) -> List[Tuple[RadialTable, float]]:
    """Tables with a positive occupation, paired with that occupation."""
    out = []
    for orb in element.orbitals:
        occ = element.occupancy.get((orb.n, orb.l), 0.0)
        if occ > 0.0:
            out.append((orb, float(occ)))
    return out


def valence_orbitals(
    element: ElementTables,
) -> Tuple[List[Tuple[RadialTable, float]], Optional[str]]:
    """
    Pick the outermost occupied shells until the valence electron count is
    reached.

    Shells are ranked by eigenvalue (highest first) when any eigenvalue is
    known, otherwise by (n, l) descending. Returns the selection and, when
    nothing could be selected, a note explaining why.
    """
    ranked = []
    for orb, occ in occupied_orbitals(element):
        energy = element.eigenvalues.get((orb.n, orb.l), float("-inf"))
        ranked.append((orb, occ, float(energy)))

    if not ranked:
        return [], "no occupied orbitals in dataset"

    if any(np.isfinite(e) for _, _, e in ranked):
        ranked.sort(key=lambda item: item[2], reverse=True)
    else:
        ranked.sort(key=lambda item: (item[0].n, item[0].l), reverse=True)

    remaining = float(element.valence_electrons or 0.0)
    if remaining <= 0.0:
        return [], "valence electron count missing"

    selected = []
    for orb, occ, _ in ranked:
        if remaining <= 0.0:
            break
        selected.append((orb, occ))
        remaining -= occ
    return selected, None


def select_orbital(
    element: ElementTables, n: int, l: int
) -> Optional[Tuple[RadialTable, bool]]:
    """
    Exact (n, l) table if present, else the first table with the same l,
    else the first table. The flag tells whether the match was exact.
    """
    same_l = None
    for orb in element.orbitals:
        if orb.n == n and orb.l == l:
            return orb, True
        if orb.l == l and same_l is None:
            same_l = orb
    if same_l is not None:
        return same_l, False
    if element.orbitals:
        return element.orbitals[0], False
    return None


def select_orbital_pair(
    element: ElementTables, n1: int, l1: int, n2: int, l2: int
) -> Optional[Tuple[RadialTable, bool, RadialTable, bool]]:
    """Two distinct tables for a superposition, closest matches allowed."""
    first = select_orbital(element, n1, l1)
    if first is None:
        return None
    orb_a, exact_a = first

    second = select_orbital(element, n2, l2)
    if second is not None:
        orb_b, exact_b = second
        if (orb_b.n, orb_b.l) != (orb_a.n, orb_a.l):
            return orb_a, exact_a, orb_b, exact_b

    for orb in element.orbitals:
        if (orb.n, orb.l) != (orb_a.n, orb_a.l):
            return orb_a, exact_a, orb, False
    return None


def available_orbitals(element: ElementTables) -> List[Dict[str, Any]]:
    """Orbitals a client may ask for: occupied ones, or all when occupancy is unknown."""
    if element.occupancy:
        orbitals = [orb for orb, _ in occupied_orbitals(element)]
    else:
        orbitals = list(element.orbitals)
    return [{"label": o.label, "n": o.n, "l": o.l} for o in orbitals]
