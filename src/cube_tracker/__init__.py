"""Cube Tracker: rigid-body pose tracking of a fiducial-marker cube."""

__version__ = "0.1.0"
