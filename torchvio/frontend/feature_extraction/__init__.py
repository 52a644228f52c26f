"""
Feature extraction module for the tracking front-end.

This module wraps the OpenCV detectors and descriptor extractors used to
replenish feature tracks, and the matcher used to recover dropped tracks.
"""

from .base import (
    DescriptorExtractor,
    FeatureDetector,
    FeatureType,
    KeyPoint,
    create_detector,
    create_extractor,
    to_grayscale,
)
from .feature_matcher import BruteForceMatcher, Match

__all__ = [
    "FeatureType",
    "KeyPoint",
    "FeatureDetector",
    "DescriptorExtractor",
    "create_detector",
    "create_extractor",
    "to_grayscale",
    "BruteForceMatcher",
    "Match",
]
