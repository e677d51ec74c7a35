import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import math

import numpy as np
import pytest

from xview_reco.geometry import View, WireGeometry, third_view


def test_view_parse_accepts_lower_case_and_enum():
    assert View.parse("u") is View.U
    assert View.parse(" W ") is View.W
    assert View.parse(View.V) is View.V
    with pytest.raises(ValueError):
        View.parse("X")


def test_third_view():
    assert third_view(View.U, View.V) is View.W
    assert third_view(View.W, View.U) is View.V
    assert third_view(View.V, View.W) is View.U
    with pytest.raises(ValueError):
        third_view(View.U, View.U)


def test_wire_coordinates_of_default_geometry():
    geo = WireGeometry()
    assert geo.wire_coordinate(View.W, 3.0, 10.0) == pytest.approx(10.0)
    assert geo.wire_coordinate(View.U, 0.0, 10.0) == pytest.approx(5.0)
    assert geo.wire_coordinate(View.V, 2.0, 0.0) == pytest.approx(math.sqrt(3.0))


@pytest.mark.parametrize("pair", [(View.U, View.V), (View.V, View.W), (View.W, View.U)])
def test_merge_recovers_the_3d_point(pair):
    geo = WireGeometry()
    point = np.array([4.0, 2.5, -7.0])
    view_a, view_b = pair
    merged = geo.merge_two_positions(
        view_a, view_b, geo.project_position(point, view_a), geo.project_position(point, view_b)
    )
    assert merged is not None
    position, chi2 = merged
    np.testing.assert_allclose(position, point, atol=1e-9)
    assert chi2 == pytest.approx(0.0)


def test_projection_into_third_view_matches_direct_projection():
    geo = WireGeometry()
    point = np.array([1.0, -3.0, 12.0])
    pu = geo.project_position(point, View.U)
    pv = geo.project_position(point, View.V)
    projected = geo.project_into_third_view(View.U, View.V, pu, pv)
    np.testing.assert_allclose(projected, geo.project_position(point, View.W), atol=1e-9)


def test_merge_averages_drift_and_reports_chi2():
    geo = WireGeometry(sigma_x=2.0)
    merged = geo.merge_two_positions(View.U, View.V, np.array([4.0, 5.0]), np.array([6.0, 5.0]))
    position, chi2 = merged
    assert position[0] == pytest.approx(5.0)
    assert chi2 == pytest.approx(1.0)


def test_merge_rejects_same_view_and_degenerate_angles():
    geo = WireGeometry()
    assert geo.merge_two_positions(View.U, View.U, np.zeros(2), np.zeros(2)) is None

    parallel = WireGeometry(angle_u=0.0, angle_v=0.0, angle_w=0.0)
    assert parallel.merge_two_positions(View.U, View.V, np.zeros(2), np.zeros(2)) is None
    assert parallel.project_into_third_view(View.U, View.V, np.zeros(2), np.zeros(2)) is None


def test_geometry_from_mapping_uses_degrees():
    geo = WireGeometry.from_mapping({"wireAngleU": 30.0, "sigmaX": 0.5})
    assert geo.angle_u == pytest.approx(math.pi / 6.0)
    assert geo.angle_v == pytest.approx(-math.pi / 3.0)
    assert geo.sigma_x == pytest.approx(0.5)
    assert WireGeometry.from_mapping(None) == WireGeometry()


def test_geometry_from_mapping_rejects_bad_blocks():
    with pytest.raises(ValueError):
        WireGeometry.from_mapping({"wireAngleX": 10.0})
    with pytest.raises(ValueError):
        WireGeometry.from_mapping({"sigmaX": 0.0})
