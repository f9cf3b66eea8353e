from .config import DriveConfig
from .models import DriveState, clamp


def decay(state: DriveState, cfg: DriveConfig) -> DriveState:
    """Pull every drive toward its baseline: v = b + (v - b) * decay."""
    k = cfg.decay
    return DriveState(
        arousal=cfg.baseline_arousal + (state.arousal - cfg.baseline_arousal) * k,
        stress=cfg.baseline_stress + (state.stress - cfg.baseline_stress) * k,
        calm=cfg.baseline_calm + (state.calm - cfg.baseline_calm) * k,
    )


def nudge(state: DriveState, arousal: float = 0.0, stress: float = 0.0, calm: float = 0.0) -> DriveState:
    return DriveState(
        arousal=clamp(state.arousal + arousal),
        stress=clamp(state.stress + stress),
        calm=clamp(state.calm + calm),
    )


def on_outcome(state: DriveState, success: bool) -> DriveState:
    if success:
        return nudge(state, arousal=0.05, stress=-0.02, calm=0.02)
    return nudge(state, arousal=-0.02, stress=0.08, calm=-0.03)


def on_loop_error(state: DriveState) -> DriveState:
    return nudge(state, stress=0.1, calm=-0.05)


def describe(state: DriveState) -> str:
    return f"arousal {state.arousal:.2f}, stress {state.stress:.2f}, calm {state.calm:.2f}"
