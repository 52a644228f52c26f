"""
Tracking module for the visual front-end.

This module contains the feature tracker, its optical flow backends, and the
mask helpers that keep new detections away from existing tracks.
"""

from .base import Feature, FeatureIdAllocator, TrackerUpdate, TrackStatus
from .mask import allocate_mask, mask_out, mask_valid, reset_mask
from .optical_flow import (
    FarnebackFlow,
    FarnebackParams,
    FlowResult,
    LKParams,
    OpticalFlow,
    OpticalFlowType,
    PyramidalLKFlow,
    create_optical_flow,
)
from .tracker import Tracker, TrackerStateError

__all__ = [
    "Feature",
    "FeatureIdAllocator",
    "TrackerUpdate",
    "TrackStatus",
    "allocate_mask",
    "mask_out",
    "mask_valid",
    "reset_mask",
    "OpticalFlowType",
    "OpticalFlow",
    "PyramidalLKFlow",
    "FarnebackFlow",
    "LKParams",
    "FarnebackParams",
    "FlowResult",
    "create_optical_flow",
    "Tracker",
    "TrackerStateError",
]
