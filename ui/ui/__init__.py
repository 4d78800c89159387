"""uupd UI package.

Rich terminal UI components for uupd:
- RichProgressReporter: overall and per-section progress bars
- Terminal progress hints (OSC 9;4) for terminals that show taskbar progress
"""

from ui.progress import (
    OSC_RESET,
    RichProgressReporter,
    format_status,
    osc_progress,
)

__all__ = [
    "OSC_RESET",
    "RichProgressReporter",
    "format_status",
    "osc_progress",
]
