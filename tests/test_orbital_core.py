import numpy as np
import pytest
from scipy.integrate import quad, trapezoid

from conftest import R_GRID, hydrogen_table
from element_tables import ElementTables
from orbital_core import (
    AngularModel,
    Basis,
    InvalidQuantumState,
    InvalidRequest,
    QuantumState,
    RadialModel,
    SingleOrbital,
    Superposition,
    Total,
    UnsupportedState,
    Valence,
    build_density,
    hydrogenic_radial,
)


@pytest.mark.parametrize(
    "n, l, m, Z",
    [(0, 0, 0, 1), (2, 2, 0, 1), (2, 1, 2, 1), (1, 0, 0, 0), (2, -1, 0, 1)],
)
def test_invalid_quantum_numbers(n, l, m, Z):
    with pytest.raises(InvalidQuantumState):
        QuantumState(n, l, m, Z)


def test_invalid_state_is_value_error():
    with pytest.raises(ValueError):
        QuantumState(1, 0, 0, 1.5)


@pytest.mark.parametrize("n, l, Z", [(1, 0, 1), (2, 1, 1), (3, 2, 1), (4, 0, 3)])
def test_hydrogenic_radial_normalised(n, l, Z):
    norm, _ = quad(lambda r: r * r * hydrogenic_radial(n, l, r, Z) ** 2, 0.0, np.inf, limit=200)
    assert norm == pytest.approx(1.0, rel=1e-6)


def test_1s_closed_form():
    r = np.linspace(0.0, 5.0, 11)
    np.testing.assert_allclose(hydrogenic_radial(1, 0, r), 2.0 * np.exp(-r))


def test_table_interpolation_zero_outside_domain():
    table = hydrogen_table(1, 0)
    radial = RadialModel.from_table(table)
    assert radial.R(np.array([41.0, 100.0])).tolist() == [0.0, 0.0]
    np.testing.assert_allclose(radial.R(R_GRID[:50]), table.values[:50])


def test_chi_table_matches_r_table():
    r_model = RadialModel.from_table(hydrogen_table(2, 1))
    chi_model = RadialModel.from_table(hydrogen_table(2, 1, kind="chi"))
    r = np.linspace(0.5, 20.0, 200)
    np.testing.assert_allclose(chi_model.R(r), r_model.R(r), atol=1e-5)
    np.testing.assert_allclose(chi_model.marginal(r), r_model.marginal(r), atol=1e-4)


def test_for_state_requires_exact_table(hydrogen_like):
    assert RadialModel.for_state(hydrogen_like, QuantumState(2, 1)).tabulated
    with pytest.raises(UnsupportedState):
        RadialModel.for_state(hydrogen_like, QuantumState(3, 2))


def test_extent_covers_hydrogenic_tail():
    r_hi = RadialModel.hydrogenic(1, 0).extent(1e-6)
    assert 7.0 < r_hi < 12.0
    assert RadialModel.hydrogenic(1, 0, Z=2).extent(1e-6) == pytest.approx(r_hi / 2.0, rel=0.05)


@pytest.mark.parametrize("l, m", [(1, 1), (2, -1), (3, 2), (2, 0)])
def test_complex_density_is_phi_independent(l, m):
    angular = AngularModel(l, m, Basis.COMPLEX)
    theta = np.linspace(0.0, np.pi, 37)
    for phi in (0.3, 1.7, 4.0):
        np.testing.assert_allclose(
            angular.density(theta, np.full_like(theta, phi)),
            angular.density(theta, np.zeros_like(theta)),
            atol=1e-12,
        )


@pytest.mark.parametrize("l", [0, 1, 2, 3])
def test_real_basis_m0_equals_complex(l):
    theta = np.linspace(0.0, np.pi, 25)
    phi = np.linspace(0.0, 2.0 * np.pi, 25)
    np.testing.assert_allclose(
        AngularModel(l, 0, Basis.REAL).amplitude(theta, phi),
        AngularModel(l, 0, Basis.COMPLEX).amplitude(theta, phi),
    )


@pytest.mark.parametrize("l", [1, 2, 3])
def test_real_and_complex_shells_sum_alike(l):
    theta = np.linspace(0.0, np.pi, 19)
    phi = np.linspace(0.0, 2.0 * np.pi, 19)
    ms = range(-l, l + 1)
    real = sum(AngularModel(l, m, Basis.REAL).density(theta, phi) for m in ms)
    cplx = sum(AngularModel(l, m, Basis.COMPLEX).density(theta, phi) for m in ms)
    np.testing.assert_allclose(real, cplx)
    np.testing.assert_allclose(cplx, (2 * l + 1) / (4.0 * np.pi))


@pytest.mark.parametrize("l, m, basis", [(1, 1, Basis.REAL), (2, -2, Basis.REAL), (3, 1, Basis.COMPLEX)])
def test_max_density_bounds_density(l, m, basis):
    angular = AngularModel(l, m, basis)
    theta, phi = np.meshgrid(np.linspace(0.0, np.pi, 91), np.linspace(0.0, 2.0 * np.pi, 91))
    assert angular.density(theta, phi).max() <= angular.max_density() * (1.0 + 1e-3)


def _random_points(count=200, seed=3):
    rng = np.random.default_rng(seed)
    return (
        rng.uniform(0.0, 15.0, count),
        np.arccos(rng.uniform(-1.0, 1.0, count)),
        rng.uniform(0.0, 2.0 * np.pi, count),
    )


def test_degenerate_superposition_is_time_invariant():
    a, b = QuantumState(2, 0, 0), QuantumState(2, 1, 0)
    r, theta, phi = _random_points()
    early = build_density(Superposition(a, b, 0.5, 0.0))
    late = build_density(Superposition(a, b, 0.5, 7.3))
    assert early.static and early.delta_e == 0.0
    np.testing.assert_allclose(early.density(r, theta, phi), late.density(r, theta, phi))


def test_superposition_at_full_mix_is_single_orbital():
    a, b = QuantumState(2, 1, 1), QuantumState(3, 2, 0)
    r, theta, phi = _random_points()
    mixed = build_density(Superposition(a, b, mix=1.0, time=2.1))
    single = build_density(SingleOrbital(a))
    assert not mixed.static
    np.testing.assert_allclose(mixed.density(r, theta, phi), single.density(r, theta, phi))


def test_superposition_mix_out_of_range():
    with pytest.raises(InvalidRequest):
        build_density(Superposition(QuantumState(1, 0), QuantumState(2, 0), mix=1.5))


def test_superposition_energy_difference():
    density = build_density(Superposition(QuantumState(1, 0), QuantumState(2, 0)))
    assert density.delta_e == pytest.approx(0.375)


def test_table_with_wrong_l_is_rejected(hydrogen_like):
    with pytest.raises(UnsupportedState):
        build_density(SingleOrbital(QuantumState(2, 0), table=hydrogen_like.orbital(2, 1)))


def test_total_and_valence_terms(second_row):
    total = build_density(Total(second_row))
    assert [t.weight for t in total.terms] == [2.0, 2.0, 3.0]
    assert all(t.angular.is_isotropic for t in total.terms)
    assert total.amplitude(*_random_points()) is None

    lobes = build_density(Valence(second_row, "orbitals"))
    assert [(t.angular.l, t.angular.m) for t in lobes.terms] == [(1, 0), (0, 0)]


def test_radial_marginal_integrates_to_electron_count(second_row):
    total = build_density(Total(second_row))
    r = np.linspace(0.0, 40.0, 8001)
    assert trapezoid(total.radial_marginal(r), r) == pytest.approx(7.0, rel=1e-3)


def test_valence_falls_back_to_occupied(second_row):
    element = ElementTables(
        symbol="N",
        orbitals=second_row.orbitals,
        occupancy=second_row.occupancy,
        valence_electrons=0.0,
    )
    density = build_density(Valence(element))
    assert density.notes == ["valence electron count missing"]
    assert len(density.terms) == 3


def test_unknown_valence_style(second_row):
    with pytest.raises(InvalidRequest):
        build_density(Valence(second_row, "wireframe"))
