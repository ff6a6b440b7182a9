"""Pure analysis logic: visibility debouncing and actuation.

This module contains NO I/O operations and NO OpenCV imports.
"""

from cube_tracker.analysis.visibility import ActuationAngles, VisibilityStateMachine

__all__ = ["VisibilityStateMachine", "ActuationAngles"]
