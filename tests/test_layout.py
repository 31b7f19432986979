from __future__ import annotations

import math

import numpy as np
import pytest

from flipgrid import (
    COLS,
    MAX_FRAME_DT,
    ROWS,
    FlipGrid,
    PointerTracker,
    SimulationClock,
    Viewport,
    activation_field,
)
from flipgrid_modes import (
    BASE_COLOR,
    BASE_SHAPE,
    LABIL,
    STABLE,
    build_attenuation,
)


def test_viewport_fills_width_and_crops_rows():
    vp = Viewport(400, 200)
    assert vp.pitch == 10
    assert vp.grid_top == -100
    assert vp.visible_rows == 20
    assert vp.locate(5, 0) == (0, 10)
    assert vp.locate(399, 199) == (39, 29)


def test_viewport_outside_is_none():
    vp = Viewport(40, 40)
    assert vp.locate(-0.5, 3) is None
    assert vp.locate(40.0, 3) is None
    assert vp.locate(3, 40.0) is None
    assert vp.locate(3, -1) is None


def test_viewport_tall_screen_centres_grid():
    vp = Viewport(40, 60)
    assert vp.grid_top == 10
    assert vp.locate(0.5, 5) is None
    assert vp.locate(0.5, 10.5) == (0, 0)
    assert vp.cell_origin(2, 3) == (3.0, 12.0)


def test_viewport_rejects_empty():
    with pytest.raises(ValueError):
        Viewport(0, 10)


def test_tracker_seed_moves_only_on_change():
    vp = Viewport(COLS, ROWS)
    t = PointerTracker()
    assert t.update((10.5, 10.5), vp) == (10, 10)
    assert t.seed == 1
    t.update((10.9, 10.1), vp)
    assert t.seed == 1
    assert t.update((11.5, 10.5), vp) == (11, 10)
    assert t.seed == 2
    assert t.update((11.5, 12.5), vp) == (11, 12)
    assert t.seed == 3
    assert t.update(None, vp) is None
    assert t.seed == 4
    t.update((-5.0, 3.0), vp)
    assert t.seed == 4


def test_tracker_frozen_reports_nothing():
    vp = Viewport(COLS, ROWS)
    t = PointerTracker()
    assert t.update((10.5, 10.5), vp, frozen=True) is None
    assert t.seed == 0


def test_clock_caps_and_freezes():
    clock = SimulationClock()
    assert clock.advance(0.01) == pytest.approx(0.01)
    assert clock.advance(1.0) == MAX_FRAME_DT
    assert clock.advance(-0.5) == 0.0
    clock.frozen = True
    assert clock.advance(0.02) == 0.0
    assert clock.time == pytest.approx(0.01 + MAX_FRAME_DT)


def test_activation_field_labil():
    table = build_attenuation(LABIL, COLS // 2)
    fld = activation_field((10, 10), table)
    assert fld.intensity.shape == (ROWS, COLS)
    assert fld.intensity[10, 10] == pytest.approx(1.0)
    assert fld.intensity[11, 10] == pytest.approx((2 / 3) ** 0.9)
    assert fld.intensity[10, 11] == pytest.approx((18 / 30) ** 0.9)
    assert fld.intensity[12, 13] == pytest.approx(((1 / 3) * (6 / 30)) ** 0.9)
    # Outside the vertical window or the horizontal reach
    assert fld.intensity[13, 10] == 0.0
    assert fld.intensity[10, 14] == 0.0
    assert fld.local_max[0, 11] == pytest.approx(math.radians(18))
    assert fld.local_max[25, 14] == 0.0
    assert fld.in_near[5, 13] and not fld.in_near[5, 14]
    assert fld.in_vertical[8, 0] and not fld.in_vertical[7, 0]


def test_activation_field_stable_reaches_further():
    table = build_attenuation(STABLE, COLS // 2)
    fld = activation_field((20, 20), table)
    assert fld.intensity[20, 30] > 0.0
    assert fld.intensity[20, 31] == 0.0


def test_activation_field_without_pointer():
    fld = activation_field(None, build_attenuation(STABLE, COLS // 2))
    assert not fld.intensity.any()
    assert not fld.local_max.any()
    assert not fld.in_vertical.any()


def test_new_grid_is_base():
    grid = FlipGrid(rng=np.random.default_rng(0))
    assert len(grid.cells) == ROWS * COLS
    for i, cell in enumerate(grid.cells):
        assert cell.index == i
        assert cell.shape == BASE_SHAPE
        assert cell.color == BASE_COLOR
        assert cell.angle == 0.0
        assert cell.modified_by is None
        assert cell.revert_timer is None
        assert 2.0 <= cell.base_flutter_amp_deg <= 5.0
        assert 0.6 <= cell.base_flutter_freq <= 2.0
        assert 0.0 <= cell.flutter_phase <= 2 * math.pi
    assert grid.cell(3, 7).index == 3 * COLS + 7


def test_same_seed_same_grid():
    a = FlipGrid(rng=np.random.default_rng(42))
    b = FlipGrid(rng=np.random.default_rng(42))
    assert [c.flutter_phase for c in a.cells] == [c.flutter_phase for c in b.cells]
