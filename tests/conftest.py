import numpy as np
import pytest

from element_tables import ElementTables, RadialTable
from orbital_core import hydrogenic_radial

R_GRID = np.linspace(0.0, 40.0, 4001)


def hydrogen_table(n, l, kind="R"):
    R = hydrogenic_radial(n, l, R_GRID)
    values = R_GRID * R if kind == "chi" else R
    return RadialTable(n, l, R_GRID, values, kind=kind)


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def hydrogen_like():
    """Tabulated hydrogen 1s/2s/2p with distinct 2s/2p eigenvalues."""
    return ElementTables(
        symbol="H",
        orbitals=(hydrogen_table(1, 0), hydrogen_table(2, 0), hydrogen_table(2, 1)),
        occupancy={(1, 0): 1.0},
        eigenvalues={(1, 0): -0.5, (2, 0): -0.5, (2, 1): -0.2},
        total_electrons=1.0,
        valence_electrons=1.0,
    )


@pytest.fixture
def second_row():
    """A Ne-like shell layout with eigenvalues that put 2p above 2s."""
    return ElementTables(
        symbol="N",
        orbitals=(hydrogen_table(1, 0), hydrogen_table(2, 0), hydrogen_table(2, 1)),
        occupancy={(1, 0): 2.0, (2, 0): 2.0, (2, 1): 3.0},
        eigenvalues={(1, 0): -14.0, (2, 0): -0.68, (2, 1): -0.27},
        total_electrons=7.0,
        valence_electrons=5.0,
        source="pslibrary",
    )


@pytest.fixture
def zero_element():
    return ElementTables(
        symbol="X",
        orbitals=(RadialTable(1, 0, R_GRID, np.zeros_like(R_GRID)),),
        occupancy={(1, 0): 1.0},
        total_electrons=1.0,
    )
