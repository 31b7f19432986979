#!/usr/bin/env python3
"""
  F L I P G R I D
  Forty by forty tiles that lift, turn and change as the pointer passes.

  Tiles are hinged on their left edge. Hover and they tilt toward you;
  tilt far enough and they commit a new shape and colour. Two moods:

    labil   grey, jittery, every change undoes itself after a few seconds
    stable  one blue accent, fluttering, changes stay until you switch

  Controls:
    1         labil mood         2         stable mood
    SPACE     freeze / thaw      r         reset every tile
    mouse     hover to lift      q         quit

  Needs a terminal that reports mouse motion (xterm-compatible) and
  256 colours. Telemetry is logged to flipgrid_stats.csv beside this
  script unless --no-stats is given.
"""

from __future__ import annotations

import argparse
import curses
import math
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, ClassVar, Iterable

import numpy as np

from flipgrid import (
    COLS,
    TOTAL,
    FlipGrid,
    FrameSnapshot,
    GridStats,
    Viewport,
)
from flipgrid_modes import (
    BASE_COLOR,
    MODE_LABIL,
    MODE_STABLE,
    MODES,
    SHAPE_CIRCLE,
    SHAPE_SQUARE,
    SHAPE_TRIANGLE,
)

LOG_PATH = Path(__file__).resolve().parent / "flipgrid_stats.csv"

# Smallest terminal the grid can be drawn in
MIN_TERM_ROWS: int = 10
MIN_TERM_COLS: int = COLS

# A terminal row is about twice as tall as a column is wide, so device
# y runs in half-rows.
ROW_SCALE: int = 2

# Tiles raised past this depth are drawn bold
RAISED_DEPTH: float = 0.01

FILL: dict[str, str] = {
    SHAPE_SQUARE: "█",
    SHAPE_CIRCLE: "●",
    SHAPE_TRIANGLE: "▶",
}
EDGE_ON = "│"  # tile seen side-on

# xterm-256 colour cube channel levels
_CUBE_LEVELS: tuple[int, ...] = (0, 95, 135, 175, 215, 255)


class RendererUnavailable(RuntimeError):
    """The terminal cannot host the grid renderer."""


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

class StatsLogger:
    """Writes per-frame grid telemetry to CSV for post-hoc tuning."""

    HEADER: ClassVar[str] = (
        "frame,time_s,mode,frozen,active_col,active_row,seed,"
        "flipped,staged,reverting,owned_stable,owned_labil,event\n"
    )

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()

    def open(self) -> None:
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            self._fh = None

    def log(
        self,
        frame: int,
        mode: str,
        frozen: bool,
        active: tuple[int, int] | None,
        seed: int,
        stats: GridStats,
        event: str = "",
    ) -> None:
        if self._fh is None:
            return
        t = time.monotonic() - self._t0
        col, row = active if active is not None else (-1, -1)
        try:
            self._fh.write(
                f"{frame},{t:.1f},{mode},{int(frozen)},{col},{row},{seed},"
                f"{stats.flipped},{stats.staged},{stats.reverting},"
                f"{stats.owned_stable},{stats.owned_labil},{event}\n"
            )
            # Flush on events or periodically
            if event or frame % 50 == 0:
                self._fh.flush()
        except OSError:
            pass

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None


# ═══════════════════════════════════════════════════════════════════════
#  Color management
# ═══════════════════════════════════════════════════════════════════════

def hex_to_xterm256(color: str) -> int:
    """Nearest xterm-256 palette index for a ``#rrggbb`` colour."""
    h = color.lstrip("#")
    if len(h) != 6:
        raise ValueError(f"expected #rrggbb, got {color!r}")
    rgb = tuple(int(h[i : i + 2], 16) for i in (0, 2, 4))

    idx = [min(range(6), key=lambda k: abs(_CUBE_LEVELS[k] - v)) for v in rgb]
    cube = 16 + 36 * idx[0] + 6 * idx[1] + idx[2]
    cube_err = sum((_CUBE_LEVELS[k] - v) ** 2 for k, v in zip(idx, rgb))

    avg = sum(rgb) / 3
    gray_i = max(0, min(23, int(round((avg - 8) / 10))))
    gray_v = 8 + 10 * gray_i
    gray_err = sum((gray_v - v) ** 2 for v in rgb)

    return cube if cube_err <= gray_err else 232 + gray_i


def known_colors() -> list[str]:
    """Every colour a tile can show, base first, without duplicates."""
    seen: list[str] = [BASE_COLOR]
    for mode in MODES.values():
        for c in (*mode.colors, mode.accent):
            if c is not None and c not in seen:
                seen.append(c)
    return seen


@dataclass
class ColorMap:
    """Manages one curses colour pair per tile colour."""

    _attrs: dict[str, int] = field(default_factory=dict)

    def setup(self, colors: Iterable[str]) -> None:
        curses.start_color()
        curses.use_default_colors()

        max_pairs = curses.COLOR_PAIRS - 1
        pair_id = 1
        for color in colors:
            if pair_id > max_pairs:
                break
            idx = hex_to_xterm256(color)
            if idx >= curses.COLORS:
                idx = curses.COLOR_WHITE
            curses.init_pair(pair_id, idx, -1)
            self._attrs[color] = curses.color_pair(pair_id)
            pair_id += 1

    def attr(self, color: str) -> int:
        return self._attrs.get(color, 0)


# ═══════════════════════════════════════════════════════════════════════
#  Rendering
# ═══════════════════════════════════════════════════════════════════════

def terminal_viewport(term_rows: int, term_cols: int) -> Viewport:
    """Device layout for a terminal; the last row is the status bar."""
    return Viewport(max(1, term_cols), max(1, (term_rows - 1) * ROW_SCALE))


def pointer_from_mouse(mx: int, my: int) -> tuple[float, float]:
    """Terminal cell → device position at the centre of that cell."""
    return float(mx), float(my * ROW_SCALE + ROW_SCALE // 2)


def cell_glyph(shape: str, rotation: float, width: int) -> str:
    """Tile face as seen head-on, ``width`` characters wide.

    The tile turns about its left edge, so its visible extent shrinks
    with cos(rotation) and it collapses to an edge when side-on.
    """
    n = int(round(max(0.0, math.cos(rotation)) * width))
    if n <= 0:
        return EDGE_ON + " " * (width - 1)
    fill = FILL.get(shape, FILL[SHAPE_SQUARE])
    if shape == SHAPE_TRIANGLE:
        face = FILL[SHAPE_SQUARE] * (n - 1) + fill
    else:
        face = fill * n
    return face + " " * (width - n)


def render(
    stdscr: curses.window,
    snap: FrameSnapshot,
    viewport: Viewport,
    cmap: ColorMap,
    stats: GridStats | None = None,
) -> None:
    """Draw every visible tile, then the status bar."""
    max_y, max_x = stdscr.getmaxyx()
    pitch = viewport.pitch
    width = max(1, int(pitch) - 1) if pitch >= 2 else 1

    # .tolist() avoids per-element numpy scalar conversion in the loop
    rotations = snap.rotations.tolist()
    depths = snap.pivots[:, 2].tolist()
    shapes = snap.shapes
    colors = snap.colors

    _addstr = stdscr.addstr
    _attr = cmap.attr
    _BOLD = curses.A_BOLD

    for i in range(TOTAL):
        r, c = divmod(i, COLS)
        x0, y0 = viewport.cell_origin(r, c)
        sy = int((y0 + pitch / 2) // ROW_SCALE)
        sx = int(x0)
        if sy < 0 or sy >= max_y - 1 or sx + width > max_x:
            continue
        attr = _attr(colors[i])
        if depths[i] > RAISED_DEPTH:
            attr |= _BOLD
        try:
            _addstr(sy, sx, cell_glyph(shapes[i], rotations[i], width), attr)
        except curses.error:
            pass

    # ── Status bar ──────────────────────────────────────────────────
    state = "halted" if snap.halted else ("frozen" if snap.frozen else "live")
    counts = ""
    if stats is not None:
        counts = (
            f"  flipped {stats.flipped:,}  staged {stats.staged:,}"
            f"  reverting {stats.reverting:,}"
        )
    left = f"  {snap.mode}  {state}  t {snap.time:,.1f}s{counts}"
    right = "1 labil  2 stable  spc freeze  r reset  q  "
    if len(left) + len(right) < max_x:
        status = left + " " * (max_x - 1 - len(left) - len(right)) + right
    else:
        status = left
    try:
        stdscr.addstr(max_y - 1, 0, status[: max_x - 1], curses.A_DIM)
    except curses.error:
        pass


def draw_frame(stdscr: curses.window, grid: FlipGrid, cmap: ColorMap) -> str:
    """Render one frame. Any failure halts the grid; returns the halt event.

    The window is only refreshed after a complete render, so the last
    good frame stays on screen when drawing breaks.
    """
    try:
        stdscr.erase()
        render(stdscr, grid.snapshot(), grid.viewport, cmap, grid.stats())
        stdscr.refresh()
    except Exception as exc:
        return grid.halt(f"render failed: {exc!r}")
    return ""


def _set_motion_tracking(enabled: bool) -> None:
    # curses only sees hover events with xterm any-motion tracking on
    sys.stdout.write("\033[?1003h" if enabled else "\033[?1003l")
    sys.stdout.flush()


# ═══════════════════════════════════════════════════════════════════════
#  Main loop
# ═══════════════════════════════════════════════════════════════════════

def handle_key(key: int, grid: FlipGrid) -> str:
    """Apply a command key; returns its event (empty if not a command)."""
    if key == ord("1"):
        return grid.set_mode(MODE_LABIL)
    if key == ord("2"):
        return grid.set_mode(MODE_STABLE)
    if key == ord(" "):
        return grid.toggle_freeze()
    if key in (ord("r"), ord("R")):
        return grid.reset_grid()
    return ""


def run(stdscr: curses.window, args: argparse.Namespace) -> str:
    """Frame loop. Returns the halt reason, or "" on a clean quit."""
    if not curses.has_colors():
        raise RendererUnavailable("terminal has no colour support")
    max_y, max_x = stdscr.getmaxyx()
    if max_y < MIN_TERM_ROWS or max_x < MIN_TERM_COLS:
        raise RendererUnavailable(
            f"terminal is {max_x}x{max_y}, need at least {MIN_TERM_COLS}x{MIN_TERM_ROWS}"
        )

    try:
        curses.curs_set(0)
    except curses.error:
        pass
    stdscr.nodelay(True)
    stdscr.timeout(0)
    curses.mousemask(curses.ALL_MOUSE_EVENTS | curses.REPORT_MOUSE_POSITION)
    curses.mouseinterval(0)

    cmap = ColorMap()
    cmap.setup(known_colors())

    grid = FlipGrid(mode=args.mode, rng=np.random.default_rng(args.seed))
    grid.resize(*_viewport_size(max_y, max_x))

    logger = StatsLogger(args.stats_path)
    if args.stats:
        logger.open()

    pointer: tuple[float, float] | None = None
    frame_delay = 1.0 / max(1.0, args.fps)
    last = time.perf_counter()

    _set_motion_tracking(True)
    try:
        while True:
            # ── Input: drain the queue, keep only the newest pointer ──
            events: list[str] = []
            quit_requested = False
            while True:
                try:
                    key = stdscr.getch()
                except curses.error:
                    key = -1
                if key == -1:
                    break
                if key in (ord("q"), ord("Q")):
                    quit_requested = True
                    break
                if key == curses.KEY_MOUSE:
                    try:
                        _, mx, my, _, _ = curses.getmouse()
                        pointer = pointer_from_mouse(mx, my)
                    except curses.error:
                        pass
                elif key == curses.KEY_RESIZE:
                    max_y, max_x = stdscr.getmaxyx()
                    grid.resize(*_viewport_size(max_y, max_x))
                else:
                    events.append(handle_key(key, grid))
            if quit_requested:
                break

            # ── Simulate ───────────────────────────────────────────
            now = time.perf_counter()
            events.append(grid.step(now - last, pointer))
            last = now

            # ── Render ─────────────────────────────────────────────
            if not grid.halted:
                events.append(draw_frame(stdscr, grid, cmap))

            # ── Log ────────────────────────────────────────────────
            event = "|".join(e for e in events if e)
            if event or grid.frame % 10 == 0:
                logger.log(
                    frame=grid.frame,
                    mode=grid.mode.name,
                    frozen=grid.frozen,
                    active=grid.active,
                    seed=grid.tracker.seed,
                    stats=grid.stats(),
                    event=event,
                )

            time.sleep(frame_delay)
    finally:
        _set_motion_tracking(False)
        logger.close()

    return grid.halt_reason


def _viewport_size(term_rows: int, term_cols: int) -> tuple[float, float]:
    vp = terminal_viewport(term_rows, term_cols)
    return vp.width, vp.height


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Interactive flip grid for the terminal")
    p.add_argument("--mode", choices=sorted(MODES), default=MODE_LABIL,
                   help="Starting mood (default: labil)")
    p.add_argument("--seed", type=int, default=None,
                   help="Random seed for reproducible runs")
    p.add_argument("--fps", type=float, default=60.0,
                   help="Target frames per second (default: 60)")
    p.add_argument("--no-stats", dest="stats", action="store_false",
                   help="Do not write the telemetry CSV")
    p.add_argument("--stats-path", type=Path, default=LOG_PATH,
                   help=f"Telemetry CSV path (default: {LOG_PATH.name} beside this script)")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        reason = curses.wrapper(run, args)
    except RendererUnavailable as exc:
        print(f"flipgrid: {exc}", file=sys.stderr)
        return 1
    except curses.error as exc:
        print(f"flipgrid: terminal renderer unavailable: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0
    if reason:
        print(f"flipgrid: animation halted: {reason}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
