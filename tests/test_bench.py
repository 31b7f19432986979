from __future__ import annotations

import numpy as np

from flipgrid import FlipGrid
from flipgrid_bench import MODE_PERIOD, FakeWindow, run_benchmark, run_frame, scripted_pointer
from flipgrid_modes import MODE_LABIL, MODE_STABLE
from flipgrid_term import ColorMap, terminal_viewport


def test_scripted_pointer_stays_on_screen():
    vp = terminal_viewport(42, 120)
    for frame in range(0, 2000, 7):
        x, y = scripted_pointer(frame, vp)
        assert 0.0 <= x < vp.width
        assert 0.0 <= y < vp.height


def test_run_frame_times_each_component():
    grid = FlipGrid(mode=MODE_LABIL, rng=np.random.default_rng(0))
    vp = terminal_viewport(42, 120)
    grid.resize(vp.width, vp.height)
    window = FakeWindow(42, 120)

    timings = run_frame(grid, 0, window, ColorMap())
    assert {"step", "snapshot", "render", "_addstr_calls"} <= set(timings)
    assert "set_mode" not in timings
    assert timings["_addstr_calls"] > 0

    timings = run_frame(grid, MODE_PERIOD, window, ColorMap())
    assert "set_mode" in timings
    assert grid.mode.name == MODE_STABLE


def test_run_benchmark_line_timing(capsys):
    run_benchmark(n_frames=5, line_timing=True, seed=1)
    out = capsys.readouterr().out
    assert "component" in out
    assert "\ntotal " in out
    assert "budget" in out


def test_run_benchmark_profiles(capsys, tmp_path):
    dump = tmp_path / "prof.out"
    run_benchmark(n_frames=3, dump_path=str(dump), seed=1, sort_key="tottime")
    out = capsys.readouterr().out
    assert "wall" in out
    assert dump.exists()
