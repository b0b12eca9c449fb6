from .auto_clock import AutoClockController, CancelReason, PendingCommit

__all__ = ["AutoClockController", "CancelReason", "PendingCommit"]
