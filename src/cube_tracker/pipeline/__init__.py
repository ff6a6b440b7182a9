"""Frame processing pipeline orchestration."""

from cube_tracker.pipeline.processor import FrameProcessor, ProcessedFrame
from cube_tracker.pipeline.tracker import RigidBodyTracker

__all__ = ["FrameProcessor", "ProcessedFrame", "RigidBodyTracker"]
