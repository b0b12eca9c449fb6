from .frame_processor import ClockState, FrameProcessor, SessionStatus, TickOutcome, TickResult
from .scheduler import TickScheduler

__all__ = [
    "ClockState",
    "FrameProcessor",
    "SessionStatus",
    "TickOutcome",
    "TickResult",
    "TickScheduler",
]
