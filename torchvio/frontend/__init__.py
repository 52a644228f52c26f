"""
Frontend module: feature detection, description and tracking.
"""

from .feature_extraction import BruteForceMatcher, FeatureType, KeyPoint
from .tracking import Feature, Tracker, TrackStatus

__all__ = [
    "BruteForceMatcher",
    "FeatureType",
    "KeyPoint",
    "Feature",
    "Tracker",
    "TrackStatus",
]
