from __future__ import annotations

import pytest

from geo.coords import Coord
from geo.polygon import point_in_ring, selection_area_sqkm
from geo.selection import Circle, NoSelection, Polygon, Rectangle

SQUARE = [(0.0, 0.0), (0.0, 10.0), (10.0, 10.0), (10.0, 0.0)]


def test_square_inside_on_edge_outside():
    results = [point_in_ring(p, SQUARE) for p in [(5.0, 5.0), (10.0, 5.0), (11.0, 5.0)]]
    assert results == [True, True, False]


def test_vertices_count_as_inside():
    assert point_in_ring((0.0, 0.0), SQUARE)
    assert point_in_ring((10.0, 10.0), SQUARE)


@pytest.mark.parametrize("ring", [[], [(0.0, 0.0)], [(0.0, 0.0), (10.0, 10.0)]])
def test_degenerate_rings_contain_nothing(ring):
    assert not point_in_ring((0.0, 0.0), ring)
    assert not point_in_ring((5.0, 5.0), ring)


def test_self_intersecting_ring_uses_even_odd():
    # Bow tie: two triangles meeting at (5, 5).
    bow = [(0.0, 0.0), (10.0, 10.0), (10.0, 0.0), (0.0, 10.0)]
    assert point_in_ring((8.0, 5.0), bow)
    assert point_in_ring((2.0, 5.0), bow)
    assert not point_in_ring((5.0, 8.0), bow)


def test_concave_ring():
    # U shape opening to the north.
    u = [(0.0, 0.0), (6.0, 0.0), (6.0, 6.0), (4.0, 6.0), (4.0, 2.0), (2.0, 2.0), (2.0, 6.0), (0.0, 6.0)]
    assert point_in_ring((1.0, 4.0), u)
    assert not point_in_ring((3.0, 4.0), u)
    assert point_in_ring((3.0, 1.0), u)


def test_selection_area():
    assert selection_area_sqkm(NoSelection()) == 0.0

    rect = Rectangle(start=Coord(lat=0.0, lon=0.0), end=Coord(lat=0.01, lon=0.01))
    # ~1.11 km x 1.11 km at the equator.
    assert selection_area_sqkm(rect) == pytest.approx(1.23, rel=0.02)

    c = Circle(center=Coord(lat=52.2, lon=0.13), edge=Coord(lat=52.2, lon=0.13))
    assert selection_area_sqkm(c) == 0.0

    tri = Polygon(points=(Coord(lat=0.0, lon=0.0), Coord(lat=0.0, lon=0.01), Coord(lat=0.01, lon=0.0)))
    assert selection_area_sqkm(tri) == pytest.approx(selection_area_sqkm(rect) / 2, rel=0.01)
