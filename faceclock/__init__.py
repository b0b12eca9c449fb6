"""Face recognition attendance clock.

Frames are pulled on a fixed tick, a face must be detected on several
consecutive ticks before it is recognized, and a recognized face is clocked
in or out after a cancellable grace period.
"""

__version__ = "1.0.0"
