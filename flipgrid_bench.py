#!/usr/bin/env python3
"""
Headless timing for the flip grid.

A Lissajous pointer sweeps the grid while the mood flips every few
seconds; each frame is stepped, snapshotted and drawn into a window
stand-in that only counts glyphs.

  python3 flipgrid_bench.py -n 2000 --sort tottime
  python3 flipgrid_bench.py --line-timing
"""

from __future__ import annotations

import argparse
import cProfile
import math
import pstats
import time
from io import StringIO

import numpy as np

from flipgrid import FlipGrid, Viewport
from flipgrid_modes import MODE_LABIL, MODE_STABLE
from flipgrid_term import ColorMap, render, terminal_viewport

FRAME_DT: float = 1.0 / 60.0
# Frames between scripted mood switches
MODE_PERIOD: int = 240


class FakeWindow:
    """Stands in for curses.window; counts addstr calls, draws nothing."""

    def __init__(self, rows: int, cols: int) -> None:
        self.size = (rows, cols)
        self.calls = 0

    def getmaxyx(self) -> tuple[int, int]:
        return self.size

    def addstr(self, *args: object) -> None:
        self.calls += 1

    def erase(self) -> None:
        pass

    refresh = erase


def scripted_pointer(frame: int, viewport: Viewport) -> tuple[float, float]:
    """Device position on a slow Lissajous curve over the whole grid."""
    t = frame * FRAME_DT
    x = (0.5 + 0.45 * math.sin(t * 0.9)) * viewport.width
    y = (0.5 + 0.45 * math.sin(t * 1.3 + 0.7)) * viewport.height
    return x, y


def run_frame(
    grid: FlipGrid, frame: int, window: FakeWindow, cmap: ColorMap
) -> dict[str, float]:
    """One scripted frame, timing each component. Returns component → seconds."""
    timings: dict[str, float] = {}

    if frame > 0 and frame % MODE_PERIOD == 0:
        t0 = time.perf_counter()
        grid.set_mode(MODE_STABLE if grid.mode.name == MODE_LABIL else MODE_LABIL)
        timings["set_mode"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    grid.step(FRAME_DT, scripted_pointer(frame, grid.viewport))
    timings["step"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    snap = grid.snapshot()
    timings["snapshot"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    calls_before = window.calls
    render(window, snap, grid.viewport, cmap, grid.stats())
    timings["render"] = time.perf_counter() - t0
    timings["_addstr_calls"] = float(window.calls - calls_before)

    return timings


def _report_timings(times: dict[str, list[float]], n_frames: int) -> None:
    """Mean/P95/max per component, then how often a frame blew the 60 fps budget."""
    print(f"{'component':<12} {'mean ms':>8} {'p95 ms':>8} {'max ms':>8}")
    for name in sorted(times):
        if name.startswith("_"):
            continue
        ms = np.array(times[name]) * 1000
        print(f"{name:<12} {ms.mean():8.2f} {np.percentile(ms, 95):8.2f} {ms.max():8.2f}")

    calls = np.array(times.get("_addstr_calls", [0.0]))
    total = np.array(times["total"]) * 1000
    budget_ms = 1000.0 / 60.0
    over = int((total > budget_ms).sum())
    print(f"\naddstr calls/frame: {calls.mean():.0f}  "
          f"over {budget_ms:.1f}ms budget: {over}/{n_frames}")


def run_benchmark(
    n_frames: int,
    term_rows: int = 42,
    term_cols: int = 120,
    line_timing: bool = False,
    dump_path: str | None = None,
    seed: int = 7,
    sort_key: str = "cumulative",
) -> None:
    """Drive ``n_frames`` scripted frames and report where the time goes."""
    grid = FlipGrid(mode=MODE_LABIL, rng=np.random.default_rng(seed))
    vp = terminal_viewport(term_rows, term_cols)
    grid.resize(vp.width, vp.height)
    window = FakeWindow(term_rows, term_cols)
    cmap = ColorMap()

    print(f"terminal {term_rows}x{term_cols}  pitch {vp.pitch:.2f}  "
          f"visible rows {vp.visible_rows:.1f}  frames {n_frames}\n")

    if line_timing:
        times: dict[str, list[float]] = {"total": []}
        for frame in range(n_frames):
            t0 = time.perf_counter()
            for k, v in run_frame(grid, frame, window, cmap).items():
                times.setdefault(k, []).append(v)
            times["total"].append(time.perf_counter() - t0)
        stats = grid.stats()
        print(f"end state: {grid.mode.name}  flipped {stats.flipped}  "
              f"reverting {stats.reverting}\n")
        _report_timings(times, n_frames)
        return

    profiler = cProfile.Profile()
    wall_t0 = time.perf_counter()
    profiler.enable()
    for frame in range(n_frames):
        run_frame(grid, frame, window, cmap)
    profiler.disable()
    wall_dt = time.perf_counter() - wall_t0
    print(f"wall {wall_dt:.2f}s  ({wall_dt / n_frames * 1000:.1f}ms/frame, "
          f"{n_frames / wall_dt:.0f} fps)\n")

    if dump_path:
        profiler.dump_stats(dump_path)
        print(f"profile written to {dump_path}\n")

    buf = StringIO()
    pstats.Stats(profiler, stream=buf).sort_stats(sort_key).print_stats(25)
    print(buf.getvalue())


def main() -> None:
    parser = argparse.ArgumentParser(description="Profile the flip grid headlessly")
    parser.add_argument("-n", "--frames", type=int, default=600)
    parser.add_argument("--rows", type=int, default=42, help="simulated terminal rows")
    parser.add_argument("--cols", type=int, default=120, help="simulated terminal columns")
    parser.add_argument("--line-timing", action="store_true",
                        help="per-component timing table instead of cProfile")
    parser.add_argument("--dump", default=None, help="write cProfile data here")
    parser.add_argument("--sort", default="cumulative", choices=("cumulative", "tottime"),
                        help="cProfile ordering")
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()

    run_benchmark(
        n_frames=args.frames,
        term_rows=args.rows,
        term_cols=args.cols,
        line_timing=args.line_timing,
        dump_path=args.dump,
        seed=args.seed,
        sort_key=args.sort,
    )


if __name__ == "__main__":
    main()
