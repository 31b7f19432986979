"""
Mode table for the flip grid.

Two moods drive the grid. STABLE is calm and focused: a wide, soft
falloff, strong flutter, a single blue accent, and cells that stay
changed until the mood switches. LABIL is restless: a narrow, steep
falloff, no flutter, grey shapes that keep reshuffling, and every change
reverts on its own after a few seconds.

Everything that differs between the two moods lives on a frozen
ModeConfig, so the per-frame update never has to branch on a global.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

# ── Shapes & colours ────────────────────────────────────────────────────
SHAPE_SQUARE = "square"
SHAPE_CIRCLE = "circle"
SHAPE_TRIANGLE = "triangle"
SHAPES: tuple[str, ...] = (SHAPE_SQUARE, SHAPE_CIRCLE, SHAPE_TRIANGLE)

BASE_SHAPE: str = SHAPE_SQUARE
BASE_COLOR: str = "#ffffff"

MODE_LABIL = "labil"
MODE_STABLE = "stable"

# Largest flip angle any cell may ever reach
MAX_ANGLE_DEG: float = 180.0
MAX_ANGLE: float = math.radians(MAX_ANGLE_DEG)


# ═══════════════════════════════════════════════════════════════════════
#  Mode configuration
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ModeConfig:
    """All tunables of one mood."""
    name: str
    start_deg: float
    decay: float
    min_deg: float
    min_flutter_amp_deg: float
    max_flutter_amp_deg: float
    flutter_freq_min: float
    flutter_freq_max: float
    colors: tuple[str, ...]
    # (square, circle, triangle); the last bucket catches rounding slop
    shape_weights: tuple[float, float, float]
    # Fixed commit colour; None = draw from the palette
    accent: str | None = None
    responsiveness: float = 12.0      # angle approach rate, 1/s
    reaction_spread: float = 0.6      # neighbour bump at distance 1
    reaction_decay: float = 2.8       # reaction falloff rate, 1/s
    depth_factor: float = 0.04        # z offset per unit sin(angle)
    hits_required: int = 1            # distinct activation seeds before a flip
    cooldown: float = 0.0             # seconds between labil flips
    # (base, uniform span, squared tail) of the self-revert timer
    revert_window: tuple[float, float, float] | None = None
    morph_interval: float | None = None
    flutter_enabled: bool = True
    # Changed cells keep fluttering and stay half open, independent of the pointer
    hold_changed: bool = True
    # Main row/column activation only counts when the pointer resolves to a cell
    strict_alignment: bool = False

    def __post_init__(self) -> None:
        if not 0.0 < self.start_deg <= MAX_ANGLE_DEG:
            raise ValueError(f"start_deg must be in (0, {MAX_ANGLE_DEG}]")
        if not 0.0 < self.decay <= 1.0:
            raise ValueError("decay must be in (0, 1]")
        if self.min_deg < 0.0:
            raise ValueError("min_deg must be non-negative")
        if not self.colors:
            raise ValueError("palette must hold at least one colour")
        if len(self.shape_weights) != len(SHAPES):
            raise ValueError(f"expected {len(SHAPES)} shape weights")
        if any(w < 0.0 for w in self.shape_weights):
            raise ValueError("shape weights must be non-negative")
        if not math.isclose(sum(self.shape_weights), 1.0, abs_tol=1e-6):
            raise ValueError("shape weights must sum to 1")
        if self.hits_required < 1:
            raise ValueError("hits_required must be at least 1")

    @property
    def start_angle(self) -> float:
        return math.radians(self.start_deg)


LABIL = ModeConfig(
    name=MODE_LABIL,
    start_deg=30.0,
    decay=0.6,
    min_deg=4.0,
    min_flutter_amp_deg=0.3,
    max_flutter_amp_deg=0.8,
    flutter_freq_min=0.3,
    flutter_freq_max=0.7,
    colors=("#888888", "#aaaaaa", "#666666"),
    shape_weights=(0.40, 0.40, 0.20),
    responsiveness=6.0,
    reaction_spread=0.3,
    reaction_decay=4.0,
    depth_factor=0.02,
    hits_required=2,
    cooldown=0.6,
    revert_window=(0.8, 2.2, 1.0),
    morph_interval=0.4,
    flutter_enabled=False,
    hold_changed=False,
    strict_alignment=True,
)

STABLE = ModeConfig(
    name=MODE_STABLE,
    start_deg=90.0,
    decay=0.78,
    min_deg=6.0,
    min_flutter_amp_deg=2.0,
    max_flutter_amp_deg=4.0,
    flutter_freq_min=0.8,
    flutter_freq_max=2.0,
    colors=("#3a5eff",),
    shape_weights=(0.3, 0.3, 0.4),
    accent="#0505fb",
)

MODES: dict[str, ModeConfig] = {
    MODE_LABIL: LABIL,
    MODE_STABLE: STABLE,
}


def get_mode(name: str) -> ModeConfig:
    """Look up a mode by name."""
    try:
        return MODES[name]
    except KeyError:
        raise ValueError(f"unknown mode {name!r} (expected one of {sorted(MODES)})") from None


def other_mode(name: str) -> str:
    return MODE_STABLE if name == MODE_LABIL else MODE_LABIL


# ═══════════════════════════════════════════════════════════════════════
#  Attenuation
# ═══════════════════════════════════════════════════════════════════════

def build_attenuation(config: ModeConfig, limit: int) -> tuple[float, ...]:
    """Maximum flip angle (degrees) by horizontal distance from the active column.

    Starts at ``start_deg`` and multiplies by ``decay`` per column. Values
    are rounded on the way out; the running product is not. Generation
    stops once the running value drops below ``min_deg`` or ``limit``
    values exist; a start already below the floor is kept as the single,
    unrounded entry. The length minus one is the mode's horizontal reach.
    """
    out: list[float] = []
    d = config.start_deg
    while len(out) < limit and d >= config.min_deg:
        out.append(max(0, math.floor(d + 0.5)))
        d *= config.decay
    if not out:
        out.append(config.start_deg)
    return tuple(out)


# ═══════════════════════════════════════════════════════════════════════
#  Random draws
# ═══════════════════════════════════════════════════════════════════════

def pick_shape(config: ModeConfig, rng: np.random.Generator) -> str:
    r = rng.random()
    w_square, w_circle, _ = config.shape_weights
    if r < w_square:
        return SHAPE_SQUARE
    if r < w_square + w_circle:
        return SHAPE_CIRCLE
    return SHAPE_TRIANGLE


def pick_color(config: ModeConfig, rng: np.random.Generator) -> str:
    return config.colors[int(rng.integers(len(config.colors)))]


def draw_revert_timer(config: ModeConfig, rng: np.random.Generator) -> float | None:
    """Self-revert delay after a commit: uniform body plus a short squared tail."""
    if config.revert_window is None:
        return None
    base, span, tail = config.revert_window
    return base + rng.random() * span + rng.random() ** 2 * tail


# ═══════════════════════════════════════════════════════════════════════
#  Revert choreography on mode change
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransitionProfile:
    """How a batch of cells owned by the outgoing mood drifts back to base."""
    base: float
    stagger: float
    jitter: float
    tail: float
    # Extra hold after the staggered delay: settle_min + U * settle_span
    settle_min: float = 0.0
    settle_span: float = 0.0
    speed_min: float = 0.25
    speed_span: float = 0.35

    def __post_init__(self) -> None:
        if self.stagger <= 0.0:
            raise ValueError("stagger must be positive")


# Keyed by the owner of the cells being reverted
REVERT_PROFILES: dict[str, TransitionProfile] = {
    MODE_STABLE: TransitionProfile(
        base=0.12, stagger=0.06, jitter=0.5, tail=0.9,
        settle_min=0.6, settle_span=0.8,
    ),
    MODE_LABIL: TransitionProfile(
        base=0.06, stagger=0.04, jitter=0.35, tail=0.6,
    ),
}

MIN_REVERT_DELAY: float = 0.02


def revert_delays(
    count: int, profile: TransitionProfile, rng: np.random.Generator
) -> NDArray[np.float64]:
    """Staggered delays for ``count`` cells, indexed by shuffle rank.

    delay = max(0.02, base + rank * stagger + jitter * (U - 0.5) + tail * U²)
    """
    if count <= 0:
        return np.zeros(0, dtype=np.float64)
    out = np.empty(count, dtype=np.float64)
    for k in range(count):
        linear = profile.base + k * profile.stagger
        long_tail = rng.random() ** 2 * profile.tail
        spread = (rng.random() - 0.5) * profile.jitter
        out[k] = max(MIN_REVERT_DELAY, linear + spread + long_tail)
    return out
