#!/usr/bin/env python3
"""Drive the tracking pipeline with a synthetic marker cube.

A cube tumbles along a circular path in front of a virtual camera. Each
frame the faces turned toward the camera are reported as noisy detections,
either as metric 3D corners or as projected pixels. A watched marker is
shown for a stretch of frames to simulate a squeeze. Tracking accuracy
against the ground truth is summarized at the end.
"""

from __future__ import annotations

import argparse
import csv
import math
import sys
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from numpy.typing import NDArray

from cube_tracker.core.config import Settings, get_settings
from cube_tracker.core.logging import get_logger, setup_logging
from cube_tracker.core.types import CameraIntrinsics, DetectionFrame, Pose
from cube_tracker.pipeline.processor import FrameProcessor, ProcessedFrame
from cube_tracker.vision import quaternion
from cube_tracker.vision.marker_model import MarkerModel, square_marker_corners
from cube_tracker.vision.projective import project_points

logger = get_logger(__name__)

SQUEEZE_MARKER_CENTER = np.array([0.15, -0.05, 0.45])


@dataclass
class FrameRecord:
    """Tracking result of one simulated frame next to its ground truth."""

    index: int
    timestamp: float
    marker_count: int
    updated: bool
    stale: bool
    position_error_mm: float | None
    rotation_error_deg: float | None
    filtered_value: float
    closed: bool


@dataclass
class SimulationSummary:
    """Summary statistics for a simulated session."""

    frames: int
    updated_frames: int
    stale_frames: int
    mean_position_error_mm: float | None
    max_position_error_mm: float | None
    mean_rotation_error_deg: float | None
    transitions: list[tuple[int, str]]


def true_pose(t: float, radius: float, distance: float) -> Pose:
    """Ground-truth cube pose at time t (seconds)."""
    position = np.array(
        [
            radius * math.cos(0.5 * t),
            radius * math.sin(0.5 * t),
            distance + 0.05 * math.sin(0.3 * t),
        ]
    )
    axis = np.array([0.3, 1.0, 0.2])
    rotation = quaternion.from_axis_angle(axis, 0.8 * t)
    return Pose(position=position, rotation=rotation)


def visible_faces(pose: Pose, model: MarkerModel) -> list[int]:
    """Markers whose face points toward a camera at the origin."""
    visible = []
    for marker_id in sorted(model.marker_ids):
        corners = quaternion.rotate(pose.rotation, model.get_corners(marker_id)) + pose.position
        # Outward normal of a TL, TR, BR, BL square.
        normal = np.cross(corners[3] - corners[0], corners[1] - corners[0])
        normal /= np.linalg.norm(normal)
        center = corners.mean(axis=0)
        # Face must be turned toward the camera by a clear margin.
        if float(np.dot(normal, -center)) > 0.2 * float(np.linalg.norm(center)):
            visible.append(marker_id)
    return visible


def squeeze_marker_corners(marker_length: float) -> NDArray[np.float64]:
    """Camera-frame corners of the watched marker, facing the camera."""
    local = square_marker_corners(marker_length)
    # Flip so the marker normal points back at the camera.
    local = local * np.array([1.0, -1.0, -1.0])
    return local + SQUEEZE_MARKER_CENTER


def make_frame(
    index: int,
    timestamp: float,
    pose: Pose,
    model: MarkerModel,
    rng: np.random.Generator,
    noise: float,
    intrinsics: CameraIntrinsics | None,
    squeeze: bool,
    watched_id: int,
) -> DetectionFrame:
    """Build the noisy detections for one frame."""
    observations: dict[int, NDArray[np.float64]] = {}

    for marker_id in visible_faces(pose, model):
        corners = quaternion.rotate(pose.rotation, model.get_corners(marker_id)) + pose.position
        observations[marker_id] = corners

    if squeeze:
        observations[watched_id] = squeeze_marker_corners(model.marker_length)

    for marker_id, corners in list(observations.items()):
        if intrinsics is None:
            observations[marker_id] = corners + rng.normal(0.0, noise, corners.shape)
        else:
            pixels = project_points(Pose.identity(), corners, intrinsics)
            observations[marker_id] = pixels + rng.normal(0.0, noise, pixels.shape)

    return DetectionFrame(observations=observations, timestamp=timestamp, index=index)


def simulate(
    settings: Settings,
    frames: int,
    fps: float,
    noise: float,
    seed: int,
    intrinsics: CameraIntrinsics | None = None,
    squeeze_start: int = 120,
    squeeze_end: int = 240,
) -> tuple[list[FrameRecord], list[tuple[int, str]]]:
    """Run the processor over a synthetic session.

    Args:
        settings: Application settings
        frames: Number of frames to simulate
        fps: Simulated frame rate
        noise: Corner noise (meters, or pixels with intrinsics)
        seed: Random seed
        intrinsics: Camera intrinsics for pixel detections, metric if None
        squeeze_start: First frame showing the watched marker
        squeeze_end: First frame after the watched marker is hidden again

    Returns:
        Tuple of (per-frame records, actuation transitions)
    """
    rng = np.random.default_rng(seed)
    processor = FrameProcessor(settings)
    if not processor.initialize(intrinsics):
        raise SystemExit("Camera intrinsics describe an image that is too small")

    model = processor.model
    if model is None:
        raise SystemExit("Frame processor has no marker model")
    watched_id = settings.visibility.watched_marker_ids[0]

    records: list[FrameRecord] = []
    transitions: list[tuple[int, str]] = []

    for index in range(frames):
        timestamp = index / fps
        pose = true_pose(timestamp, radius=0.08, distance=0.5)
        squeeze = squeeze_start <= index < squeeze_end
        frame = make_frame(index, timestamp, pose, model, rng, noise, intrinsics, squeeze, watched_id)

        result = processor.process_frame(frame)
        records.append(_record(result, pose))

        if result.transition is not None:
            transitions.append((index, result.transition.name))

        if (index + 1) % 100 == 0:
            logger.info("Simulated %d frames...", index + 1)

    return records, transitions


def _record(result: ProcessedFrame, truth: Pose) -> FrameRecord:
    update = result.primary
    position_error = None
    rotation_error = None
    if update.pose is not None:
        position_error = float(np.linalg.norm(update.pose.position - truth.position)) * 1000
        rotation_error = math.degrees(quaternion.angle_between(update.pose.rotation, truth.rotation))

    return FrameRecord(
        index=result.frame.index,
        timestamp=result.frame.timestamp,
        marker_count=update.raw.marker_count,
        updated=update.updated,
        stale=update.stale,
        position_error_mm=position_error,
        rotation_error_deg=rotation_error,
        filtered_value=result.filtered_value,
        closed=result.closed,
    )


def compute_summary(records: list[FrameRecord], transitions: list[tuple[int, str]]) -> SimulationSummary:
    """Compute summary statistics from frame records."""
    position_errors = [r.position_error_mm for r in records if r.position_error_mm is not None]
    rotation_errors = [r.rotation_error_deg for r in records if r.rotation_error_deg is not None]

    return SimulationSummary(
        frames=len(records),
        updated_frames=sum(1 for r in records if r.updated),
        stale_frames=sum(1 for r in records if r.stale),
        mean_position_error_mm=float(np.mean(position_errors)) if position_errors else None,
        max_position_error_mm=max(position_errors) if position_errors else None,
        mean_rotation_error_deg=float(np.mean(rotation_errors)) if rotation_errors else None,
        transitions=transitions,
    )


def print_summary(summary: SimulationSummary) -> None:
    """Print simulation summary to console."""
    print("\n" + "=" * 60)
    print("SIMULATION SUMMARY")
    print("=" * 60)
    print(f"Frames:              {summary.frames}")
    print(f"Updated frames:      {summary.updated_frames}")
    print(f"Stale frames:        {summary.stale_frames}")

    if summary.mean_position_error_mm is not None:
        print(f"\nMean position error: {summary.mean_position_error_mm:.2f} mm")
        print(f"Max position error:  {summary.max_position_error_mm:.2f} mm")
        print(f"Mean rotation error: {summary.mean_rotation_error_deg:.2f} deg")

    print("\nActuation transitions:")
    if not summary.transitions:
        print("  none")
    for index, name in summary.transitions:
        print(f"  frame {index:<6} {name}")


def save_records(records: list[FrameRecord], output_path: Path) -> None:
    """Write per-frame records to CSV."""
    with open(output_path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(
            [
                "frame",
                "timestamp",
                "markers",
                "updated",
                "stale",
                "position_error_mm",
                "rotation_error_deg",
                "filtered_value",
                "closed",
            ]
        )
        for r in records:
            writer.writerow(
                [
                    r.index,
                    f"{r.timestamp:.4f}",
                    r.marker_count,
                    int(r.updated),
                    int(r.stale),
                    f"{r.position_error_mm:.3f}" if r.position_error_mm is not None else "",
                    f"{r.rotation_error_deg:.3f}" if r.rotation_error_deg is not None else "",
                    f"{r.filtered_value:.4f}",
                    int(r.closed),
                ]
            )

    logger.info("Records saved to: %s", output_path)


def main() -> int:
    """Run simulation script."""
    parser = argparse.ArgumentParser(description="Simulate a marker cube tracking session")
    parser.add_argument(
        "--frames",
        "-n",
        type=int,
        default=600,
        help="Number of frames to simulate (default: 600)",
    )
    parser.add_argument(
        "--fps",
        type=float,
        default=60.0,
        help="Simulated frame rate (default: 60)",
    )
    parser.add_argument(
        "--noise",
        type=float,
        default=None,
        help="Corner noise, meters or pixels (default: 0.001 m / 0.5 px)",
    )
    parser.add_argument(
        "--pixels",
        action="store_true",
        help="Report detections as pixels through a virtual 1280x720 camera",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=0,
        help="Random seed (default: 0)",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        help="Output CSV for per-frame records",
    )

    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.logging.level, settings.logging.file, settings.logging.quiet_modules)

    intrinsics = None
    if args.pixels:
        intrinsics = CameraIntrinsics(width=1280, height=720, fx=900.0, fy=900.0, cx=640.0, cy=360.0)

    noise = args.noise
    if noise is None:
        noise = 0.5 if args.pixels else 0.001

    records, transitions = simulate(
        settings,
        frames=args.frames,
        fps=args.fps,
        noise=noise,
        seed=args.seed,
        intrinsics=intrinsics,
    )

    summary = compute_summary(records, transitions)
    print_summary(summary)

    if args.output:
        save_records(records, args.output)

    return 0 if summary.updated_frames > 0 else 1


if __name__ == "__main__":
    sys.exit(main())
