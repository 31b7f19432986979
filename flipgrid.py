"""
Flip grid simulation core.

A fixed 40×40 grid of tiles hinged on their left edge. The pointer lifts
the tiles around it; a tile that rises past half of its local maximum
commits a new shape and colour, nudges its eight neighbours, and (in the
labil mood) schedules its own return to a white square. Switching moods
sends the outgoing mood's tiles home in a shuffled, staggered wave.

Nothing here draws. Each frame the front-end calls FlipGrid.step() with
the elapsed time and the latest pointer sample, then reads a
FrameSnapshot: one shape, colour, pivot and rotation per tile.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from flipgrid_modes import (
    BASE_COLOR,
    BASE_SHAPE,
    MAX_ANGLE,
    MODE_LABIL,
    MODE_STABLE,
    REVERT_PROFILES,
    ModeConfig,
    TransitionProfile,
    build_attenuation,
    draw_revert_timer,
    get_mode,
    other_mode,
    pick_color,
    pick_shape,
    revert_delays,
)

# ── Grid ────────────────────────────────────────────────────────────────
COLS: int = 40
ROWS: int = 40
TOTAL: int = COLS * ROWS
TILE: float = 1.0

# Attenuation tables never hold more entries than half the grid width
ATTENUATION_LIMIT: int = COLS // 2

# ── Activation field ────────────────────────────────────────────────────
VERTICAL_WINDOW: int = 5
VERTICAL_HALF: int = VERTICAL_WINDOW // 2
INTENSITY_GAMMA: float = 0.9        # <1 sharpens the falloff near the pointer

# ── Per-cell tuning ─────────────────────────────────────────────────────
MAX_FRAME_DT: float = 0.040         # seconds; long frames are clipped
HOVER_FLOOR: float = 0.6            # of start angle, hovered changed cell
OPEN_POSTURE: float = 0.3           # of start angle, any changed cell
HOVER_REACTION: float = 0.8
FLUTTER_THRESHOLD: float = 0.001
MIN_REACTION_DIST: float = 0.8
COMMIT_FRACTION: float = 0.5

BASE_FLUTTER_AMP_DEG: tuple[float, float] = (2.0, 3.0)   # min, span
BASE_FLUTTER_FREQ: tuple[float, float] = (0.6, 1.4)      # min, span

NEIGHBOURS: tuple[tuple[int, int, float], ...] = tuple(
    (dr, dc, math.hypot(dr, dc))
    for dr in (-1, 0, 1)
    for dc in (-1, 0, 1)
    if dr or dc
)

# Pivot sits on the left edge of each tile, vertically centred
_PIVOT_X: NDArray[np.float32] = np.tile(
    (-COLS / 2 + np.arange(COLS)) * TILE, ROWS
).astype(np.float32)
_PIVOT_Y: NDArray[np.float32] = np.repeat(
    (ROWS / 2 - np.arange(ROWS)) * TILE - TILE / 2, COLS
).astype(np.float32)


# ═══════════════════════════════════════════════════════════════════════
#  Cell record
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class Cell:
    """One tile. Plain data: every transition happens in tick_cells().

    Optional fields use None for "off"; the staged pair (pending_shape,
    pending_color) is always set or cleared together.
    """
    row: int
    col: int
    shape: str = BASE_SHAPE
    color: str = BASE_COLOR
    angle: float = 0.0
    target_angle: float = 0.0
    depth: float = 0.0
    pending_shape: str | None = None
    pending_color: str | None = None
    flipped: bool = False
    # Local max at commit time; the un-flip threshold is half of this
    flipped_max_angle: float | None = None
    intensity: float = 0.0
    flutter_active: bool = False
    flutter_phase: float = 0.0
    flutter_freq: float = 0.0
    flutter_amp_deg: float = 0.0
    base_flutter_freq: float = 0.0
    base_flutter_amp_deg: float = 0.0
    reaction: float = 0.0
    cooldown: float = 0.0
    revert_timer: float | None = None
    modified_by: str | None = None
    reverting: bool = False
    revert_speed_mult: float = 1.0
    morph_timer: float = 0.0
    labil_activation_count: int = 0
    labil_last_seed: int = -1
    last_activation_seed: int = -1

    @property
    def index(self) -> int:
        return self.row * COLS + self.col

    def is_base(self) -> bool:
        return (
            self.shape == BASE_SHAPE
            and self.color == BASE_COLOR
            and not self.flipped
        )


def _stage(cell: Cell, shape: str, color: str) -> None:
    cell.pending_shape = shape
    cell.pending_color = color


def _revert_to_base(cell: Cell) -> None:
    cell.color = BASE_COLOR
    cell.shape = BASE_SHAPE
    cell.flipped = False
    cell.flipped_max_angle = None
    cell.revert_timer = None
    cell.modified_by = None
    cell.reverting = False
    cell.revert_speed_mult = 1.0
    cell.intensity = 0.0
    cell.flutter_active = False


def _reset_cell(cell: Cell) -> None:
    """Every field back to its creation value (drawn flutter bases are kept)."""
    _revert_to_base(cell)
    cell.pending_shape = None
    cell.pending_color = None
    cell.angle = 0.0
    cell.target_angle = 0.0
    cell.depth = 0.0
    cell.reaction = 0.0
    cell.cooldown = 0.0
    cell.morph_timer = 0.0
    cell.flutter_amp_deg = cell.base_flutter_amp_deg
    cell.flutter_freq = cell.base_flutter_freq
    cell.labil_activation_count = 0
    cell.labil_last_seed = -1
    cell.last_activation_seed = -1


# ═══════════════════════════════════════════════════════════════════════
#  Layout & pointer
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Viewport:
    """Device-space layout. The grid fills the width; rows that don't fit
    vertically are cropped evenly top and bottom."""
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"viewport must be positive, got {self.width}x{self.height}")

    @property
    def pitch(self) -> float:
        return self.width / COLS

    @property
    def grid_top(self) -> float:
        """Device y of row 0's top edge (negative when cropped)."""
        return (self.height - ROWS * self.pitch) / 2

    @property
    def visible_rows(self) -> float:
        return min(float(ROWS), self.height / self.pitch)

    def locate(self, x: float, y: float) -> tuple[int, int] | None:
        """(col, row) under a device position, or None outside the grid."""
        if not (0.0 <= y < self.height):
            return None
        col = math.floor(x / self.pitch)
        row = math.floor((y - self.grid_top) / self.pitch)
        if 0 <= col < COLS and 0 <= row < ROWS:
            return col, row
        return None

    def cell_origin(self, row: int, col: int) -> tuple[float, float]:
        """Device (x, y) of a tile's top-left corner."""
        return col * self.pitch, self.grid_top + row * self.pitch


class PointerTracker:
    """Resolves the pointer to an active (col, row) once per frame.

    ``seed`` grows by one each time the resolved cell changes (including
    to and from "nothing"), so several frames over the same cell count as
    a single activation downstream.
    """

    def __init__(self) -> None:
        self.seed: int = 0
        self.active: tuple[int, int] | None = None
        self._prev: tuple[int, int] | None = None

    def update(
        self,
        pointer: tuple[float, float] | None,
        viewport: Viewport,
        frozen: bool = False,
    ) -> tuple[int, int] | None:
        active = None
        if not frozen and pointer is not None:
            active = viewport.locate(pointer[0], pointer[1])
        if active != self._prev:
            self._prev = active
            self.seed += 1
        self.active = active
        return active


@dataclass
class SimulationClock:
    """Logical time. Frozen time does not accrue."""
    time: float = 0.0
    frozen: bool = False
    max_dt: float = MAX_FRAME_DT

    def advance(self, dt: float) -> float:
        """Advance by a wall-clock delta; returns the delta actually applied."""
        if self.frozen:
            return 0.0
        dt = min(self.max_dt, max(0.0, dt))
        self.time += dt
        return dt


# ═══════════════════════════════════════════════════════════════════════
#  Activation field
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ActivationField:
    """Per-frame pointer influence, each array shaped (ROWS, COLS)."""
    intensity: NDArray[np.float64]
    local_max: NDArray[np.float64]     # radians
    in_vertical: NDArray[np.bool_]
    in_near: NDArray[np.bool_]


def activation_field(
    active: tuple[int, int] | None, attenuation: tuple[float, ...]
) -> ActivationField:
    """Vertical linear falloff × horizontal attenuation ratio, then ^0.9."""
    shape = (ROWS, COLS)
    if active is None:
        return ActivationField(
            intensity=np.zeros(shape),
            local_max=np.zeros(shape),
            in_vertical=np.zeros(shape, dtype=np.bool_),
            in_near=np.zeros(shape, dtype=np.bool_),
        )

    ac, ar = active
    table = np.asarray(attenuation, dtype=np.float64)
    radius = len(table) - 1

    hdist = np.abs(np.arange(COLS) - ac)
    near = hdist <= radius
    deg = np.where(near, table[np.minimum(hdist, radius)], 0.0)
    h_factor = deg / table[0] if table[0] > 0 else np.zeros(COLS)

    vdist = np.abs(np.arange(ROWS) - ar)
    vertical = vdist <= VERTICAL_HALF
    v_factor = np.maximum(0.0, 1.0 - vdist / (VERTICAL_HALF + 1))

    mask = vertical[:, None] & near[None, :]
    intensity = np.where(mask, np.outer(v_factor, h_factor), 0.0) ** INTENSITY_GAMMA

    return ActivationField(
        intensity=intensity,
        local_max=np.broadcast_to(np.radians(deg), shape).copy(),
        in_vertical=np.broadcast_to(vertical[:, None], shape).copy(),
        in_near=np.broadcast_to(near[None, :], shape).copy(),
    )


# ═══════════════════════════════════════════════════════════════════════
#  The per-frame update
# ═══════════════════════════════════════════════════════════════════════

def tick_cells(
    cells: list[Cell],
    mode: ModeConfig,
    attenuation: tuple[float, ...],
    active: tuple[int, int] | None,
    seed: int,
    dt: float,
    rng: np.random.Generator,
) -> int:
    """Advance every cell by ``dt`` seconds under ``mode``. Returns commits.

    Cells are visited in row-major order. Neighbour reactions are written
    as maxima, so the visiting order only shifts when a bump is first seen.
    """
    fld = activation_field(active, attenuation)
    # Plain lists: per-element numpy scalar access is slow in the loop
    intensity = fld.intensity.ravel().tolist()
    local_max = fld.local_max.ravel().tolist()
    in_vertical = fld.in_vertical.ravel().tolist()
    in_near = fld.in_near.ravel().tolist()

    resolved = active is not None
    ac, ar = active if active is not None else (-1, -1)
    aligned = resolved or not mode.strict_alignment
    fixed_max = mode.start_angle
    commits = 0

    for i, cell in enumerate(cells):
        r, c = cell.row, cell.col
        inten = intensity[i]
        lmax = local_max[i]
        vert = in_vertical[i]
        near = in_near[i]

        # ── Activation flags ──
        main_col = resolved and c == ac
        main_row = resolved and r == ar
        hit = (main_col and vert and aligned) or (main_row and near and aligned)

        cell.intensity = inten
        cell.flutter_active = inten > FLUTTER_THRESHOLD
        changed = cell.color != BASE_COLOR

        # ── Flutter ──
        if mode.hold_changed and changed:
            cell.flutter_active = True
            cell.intensity = 1.0
            cell.flutter_amp_deg = mode.max_flutter_amp_deg
            cell.flutter_freq = cell.base_flutter_freq
            if hit:
                cell.reaction = max(cell.reaction, HOVER_REACTION)
        if not mode.flutter_enabled:
            cell.flutter_active = False
            cell.flutter_amp_deg = 0.0
            cell.flutter_freq = 0.0
        elif not changed:
            cell.flutter_amp_deg = cell.base_flutter_amp_deg
            cell.flutter_freq = cell.base_flutter_freq

        # ── Target posture ──
        latched = cell.flipped_max_angle if cell.flipped_max_angle is not None else lmax
        if vert and main_col:
            target = latched * (1.0 - inten) if cell.flipped else inten * lmax
        elif vert and near:
            target = inten * lmax
        else:
            target = latched if cell.flipped else 0.0
        if mode.hold_changed and changed:
            if hit:
                target = max(target, HOVER_FLOOR * fixed_max)
            target = max(target, OPEN_POSTURE * fixed_max)
        posture = target

        # ── Debounced staging ──
        if not cell.flipped and hit and cell.last_activation_seed != seed:
            cell.last_activation_seed = seed
            if mode.hits_required > 1:
                if cell.labil_last_seed != seed:
                    cell.labil_last_seed = seed
                    cell.labil_activation_count += 1
                if cell.labil_activation_count >= mode.hits_required and cell.cooldown <= 0:
                    _stage(cell, pick_shape(mode, rng), pick_color(mode, rng))
                    cell.labil_activation_count = 0
                    cell.cooldown = mode.cooldown
            else:
                color = mode.accent if mode.accent is not None else pick_color(mode, rng)
                _stage(cell, pick_shape(mode, rng), color)

        # ── Timers ──
        cell.cooldown = max(0.0, cell.cooldown - dt)
        if cell.revert_timer is not None:
            cell.revert_timer = max(0.0, cell.revert_timer - dt)
            if cell.revert_timer <= 0.0:
                _revert_to_base(cell)

        if mode.morph_interval is not None and cell.revert_timer is not None:
            cell.morph_timer -= dt
            if cell.morph_timer <= 0.0:
                cell.shape = pick_shape(mode, rng)
                cell.color = pick_color(mode, rng)
                cell.morph_timer = mode.morph_interval

        # ── Reaction bump, clamp ──
        target += cell.reaction * lmax
        target = max(0.0, min(lmax if lmax > 0.0 else MAX_ANGLE, target))
        if cell.reverting:
            target = 0.0
        cell.target_angle = target

        # ── Integrate ──
        mult = cell.revert_speed_mult if cell.reverting else 1.0
        prev = cell.angle
        cell.angle = prev + (target - prev) * min(1.0, mode.responsiveness * mult * dt)

        # ── Commit on the way up ──
        mid = lmax * COMMIT_FRACTION
        if cell.pending_shape is not None and prev < mid <= cell.angle:
            cell.shape = cell.pending_shape
            cell.color = cell.pending_color or cell.color
            cell.pending_shape = None
            cell.pending_color = None
            cell.flipped = True
            cell.flipped_max_angle = lmax
            cell.modified_by = mode.name
            timer = draw_revert_timer(mode, rng)
            if timer is not None:
                cell.revert_timer = timer
            commits += 1

            strength = posture / max(1e-6, lmax)
            for dr, dc, dist in NEIGHBOURS:
                nr, nc = r + dr, c + dc
                if 0 <= nr < ROWS and 0 <= nc < COLS:
                    amp = mode.reaction_spread * strength / max(MIN_REACTION_DIST, dist)
                    other = cells[nr * COLS + nc]
                    other.reaction = max(other.reaction, amp)

        # ── Un-flip on the way down ──
        elif cell.flipped:
            half = (
                cell.flipped_max_angle if cell.flipped_max_angle is not None else lmax
            ) * COMMIT_FRACTION
            if prev > half >= cell.angle:
                cell.flipped = False
                cell.flipped_max_angle = None

        cell.reaction = max(0.0, cell.reaction * math.exp(-mode.reaction_decay * dt))
        cell.depth = math.sin(cell.angle) * TILE * mode.depth_factor

    return commits


# ═══════════════════════════════════════════════════════════════════════
#  Render-facing snapshot
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CellView:
    shape: str
    color: str
    pivot: tuple[float, float, float]
    rotation: float


@dataclass(frozen=True)
class FrameSnapshot:
    """Everything a renderer needs for one frame, indexed row-major."""
    shapes: tuple[str, ...]
    colors: tuple[str, ...]
    pivots: NDArray[np.float32]      # (TOTAL, 3) grid units, z = depth
    rotations: NDArray[np.float32]   # radians, flutter included
    angles: NDArray[np.float32]      # integrated angle only
    mode: str
    frozen: bool
    halted: bool
    time: float
    active: tuple[int, int] | None
    seed: int

    def cell(self, row: int, col: int) -> CellView:
        i = row * COLS + col
        x, y, z = self.pivots[i].tolist()
        return CellView(
            shape=self.shapes[i],
            color=self.colors[i],
            pivot=(x, y, z),
            rotation=float(self.rotations[i]),
        )


@dataclass(frozen=True)
class GridStats:
    flipped: int
    staged: int
    reverting: int
    pending_reverts: int
    owned_stable: int
    owned_labil: int


# ═══════════════════════════════════════════════════════════════════════
#  The grid
# ═══════════════════════════════════════════════════════════════════════

class FlipGrid:
    """
    The 40×40 flip grid: cells, pointer tracking, clock, and mode changes.

    All randomness goes through ``rng`` so runs are reproducible from a
    seed. The active ModeConfig is held here and handed explicitly to
    tick_cells() each frame; separate grids share nothing.
    """

    def __init__(
        self,
        mode: str = MODE_LABIL,
        rng: np.random.Generator | None = None,
        viewport: Viewport | None = None,
    ) -> None:
        self.rng: np.random.Generator = rng if rng is not None else np.random.default_rng()
        self.mode: ModeConfig = get_mode(mode)
        self.attenuation: tuple[float, ...] = build_attenuation(self.mode, ATTENUATION_LIMIT)
        self.viewport: Viewport = viewport if viewport is not None else Viewport(COLS * TILE, ROWS * TILE)
        self.tracker: PointerTracker = PointerTracker()
        self.clock: SimulationClock = SimulationClock()
        self.active: tuple[int, int] | None = None
        self.frame: int = 0

        self.halted: bool = False
        self.halt_reason: str = ""

        # Delays handed out by the most recent mode change, by shuffle rank
        self.last_revert_delays: NDArray[np.float64] = np.zeros(0)
        self._settling: bool = False

        self.cells: list[Cell] = [
            self._new_cell(r, c) for r in range(ROWS) for c in range(COLS)
        ]

    def _new_cell(self, row: int, col: int) -> Cell:
        amp_min, amp_span = BASE_FLUTTER_AMP_DEG
        freq_min, freq_span = BASE_FLUTTER_FREQ
        base_amp = amp_min + self.rng.random() * amp_span
        base_freq = freq_min + self.rng.random() * freq_span
        return Cell(
            row=row,
            col=col,
            flutter_phase=self.rng.random() * 2.0 * math.pi,
            flutter_freq=base_freq,
            flutter_amp_deg=base_amp,
            base_flutter_freq=base_freq,
            base_flutter_amp_deg=base_amp,
        )

    # ── Accessors ───────────────────────────────────────────────────

    @property
    def frozen(self) -> bool:
        return self.clock.frozen

    @property
    def horizontal_radius(self) -> int:
        return len(self.attenuation) - 1

    def cell(self, row: int, col: int) -> Cell:
        return self.cells[row * COLS + col]

    # ── Simulation ──────────────────────────────────────────────────

    def step(self, dt: float, pointer: tuple[float, float] | None) -> str:
        """Advance one frame. Returns event string (empty if none).

        While frozen nothing moves: no time, timers, angles or flutter.
        """
        self.frame += 1
        dt = self.clock.advance(dt)
        if self.clock.frozen:
            return ""

        self.active = self.tracker.update(pointer, self.viewport)
        tick_cells(
            self.cells,
            self.mode,
            self.attenuation,
            self.active,
            self.tracker.seed,
            dt,
            self.rng,
        )

        if self._settling and not any(cell.reverting for cell in self.cells):
            self._settling = False
            return "settled"
        return ""

    def resize(self, width: float, height: float) -> None:
        """Recompute layout for new device dimensions. Safe to repeat."""
        self.viewport = Viewport(width, height)

    # ── Commands ────────────────────────────────────────────────────

    def set_mode(self, name: str) -> str:
        """Switch mood; cells owned by the other mood drift back to base."""
        mode = get_mode(name)
        self.mode = mode
        self.attenuation = build_attenuation(mode, ATTENUATION_LIMIT)

        if mode.hold_changed:
            for cell in self.cells:
                if cell.modified_by != mode.name:
                    continue
                cell.revert_timer = None
                cell.reverting = False
                cell.revert_speed_mult = 1.0
                cell.flutter_active = True
                cell.intensity = 1.0
                if cell.color == BASE_COLOR:
                    cell.color = mode.colors[0]
        # Revived cells no longer count toward the wave in flight
        self._settling = any(cell.reverting for cell in self.cells)

        outgoing = other_mode(mode.name)
        batch = [cell for cell in self.cells if cell.modified_by == outgoing]
        self.schedule_reverts(batch, REVERT_PROFILES[outgoing])
        return f"mode:{mode.name}"

    def schedule_reverts(self, batch: list[Cell], profile: TransitionProfile) -> None:
        """Shuffle ``batch`` and give each cell a rank-staggered revert timer."""
        order = self.rng.permutation(len(batch))
        delays = revert_delays(len(batch), profile, self.rng)
        for rank, idx in enumerate(order.tolist()):
            cell = batch[idx]
            cell.target_angle = 0.0
            cell.reverting = True
            cell.revert_speed_mult = profile.speed_min + self.rng.random() * profile.speed_span
            cell.flutter_active = False
            settle = profile.settle_min + self.rng.random() * profile.settle_span
            cell.revert_timer = float(delays[rank]) + settle
        self.last_revert_delays = delays
        if batch:
            self._settling = True

    def toggle_freeze(self) -> str:
        if self.halted:
            return ""
        self.clock.frozen = not self.clock.frozen
        return "freeze" if self.clock.frozen else "thaw"

    def halt(self, reason: str) -> str:
        """Freeze for good after a render failure; toggle_freeze() no longer thaws."""
        self.halted = True
        self.halt_reason = reason
        self.clock.frozen = True
        return f"halt:{reason}"

    def reset_grid(self) -> str:
        for cell in self.cells:
            _reset_cell(cell)
        self._settling = False
        return "reset"

    # ── Output ──────────────────────────────────────────────────────

    def snapshot(self) -> FrameSnapshot:
        cells = self.cells
        t = self.clock.time
        angles = np.fromiter((cell.angle for cell in cells), dtype=np.float64, count=TOTAL)
        depth = np.fromiter((cell.depth for cell in cells), dtype=np.float64, count=TOTAL)

        flutter = np.zeros(TOTAL)
        for i, cell in enumerate(cells):
            if cell.flutter_active:
                amp = math.radians(cell.flutter_amp_deg * cell.intensity)
                flutter[i] = amp * math.sin(t * cell.flutter_freq * 2.0 * math.pi + cell.flutter_phase)

        pivots = np.empty((TOTAL, 3), dtype=np.float32)
        pivots[:, 0] = _PIVOT_X
        pivots[:, 1] = _PIVOT_Y
        pivots[:, 2] = depth

        return FrameSnapshot(
            shapes=tuple(cell.shape for cell in cells),
            colors=tuple(cell.color for cell in cells),
            pivots=pivots,
            rotations=(angles + flutter).astype(np.float32),
            angles=angles.astype(np.float32),
            mode=self.mode.name,
            frozen=self.clock.frozen,
            halted=self.halted,
            time=t,
            active=self.active,
            seed=self.tracker.seed,
        )

    def stats(self) -> GridStats:
        flipped = staged = reverting = pending = stable = labil = 0
        for cell in self.cells:
            flipped += cell.flipped
            staged += cell.pending_shape is not None
            reverting += cell.reverting
            pending += cell.revert_timer is not None
            if cell.modified_by == MODE_STABLE:
                stable += 1
            elif cell.modified_by == MODE_LABIL:
                labil += 1
        return GridStats(
            flipped=flipped,
            staged=staged,
            reverting=reverting,
            pending_reverts=pending,
            owned_stable=stable,
            owned_labil=labil,
        )
