import logging
from typing import Dict, List, Optional, Union

import numpy as np
import torch

from ...config import DEFAULT_TRACKER_CONFIG, merge_config
from ..feature_extraction import (
    BruteForceMatcher,
    KeyPoint,
    create_detector,
    create_extractor,
    to_grayscale,
)
from .base import Feature, FeatureIdAllocator, TrackerUpdate
from .mask import allocate_mask, mask_out, mask_valid, reset_mask
from .optical_flow import OpticalFlowType, create_optical_flow


class TrackerStateError(RuntimeError):
    """Raised when ``Tracker.update`` is called in violation of its contract."""


class Tracker:
    """
    Feature tracker of the visual front-end.

    Owns the active feature set, the optical flow backend, the detector and
    extractor, and the detection mask. Features are propagated frame to frame
    with optical flow; when too few survive, new features are detected where
    the mask allows it. Features lost by the optical flow can get their
    identity back if a new detection matches their descriptor.

    ``update`` is the only per-frame entry point. It is not reentrant and must
    be driven from a single thread.
    """

    def __init__(self, config: Dict = None):
        """
        Initialize tracker.

        Args:
            config: Configuration dictionary, merged over
                ``DEFAULT_TRACKER_CONFIG``. Keys:
                - optflow_class: "lucas-kanade" or "farneback"
                - margin: Border margin (pixels) where nothing is detected
                - mask_size: Side of the exclusion box around each feature
                - num_features_min: Replenish when fewer features are active
                - num_features_max: Upper bound on active features
                - max_pixel_displacement: Displacement veto (Lucas-Kanade)
                - extract_descriptor: Compute descriptors for new features
                - match_dropped_tracks: Recover dropped tracks by descriptor
                - descriptor_distance_thresh: Match acceptance threshold
                - verify_tracks_with_descriptor: Drop tracked features whose
                  appearance drifted past the threshold
                - detector, extractor: OpenCV algorithm names
                - KLT, farneback: Backend parameter blocks
        """
        self.config = merge_config(DEFAULT_TRACKER_CONFIG, config)
        self.logger = logging.getLogger(self.__class__.__name__)

        cfg = self.config
        self.optflow_class = OpticalFlowType.parse(cfg["optflow_class"])
        self.margin = int(cfg["margin"])
        self.mask_size = int(cfg["mask_size"])
        self.num_features_min = int(cfg["num_features_min"])
        self.num_features_max = int(cfg["num_features_max"])
        self.max_pixel_displacement = float(cfg["max_pixel_displacement"])
        self.extract_descriptor = bool(cfg["extract_descriptor"])
        self.match_dropped_tracks = bool(cfg["match_dropped_tracks"])
        self.descriptor_distance_thresh = float(cfg["descriptor_distance_thresh"])
        self.verify_tracks_with_descriptor = bool(cfg["verify_tracks_with_descriptor"])
        self.track_history = int(cfg["track_history"])
        self._validate()

        # Components
        self.optical_flow = create_optical_flow(self.optflow_class, cfg)
        self.detector = create_detector(cfg["detector"], cfg)
        self.extractor = (
            create_extractor(cfg["extractor"], cfg) if self.extract_descriptor else None
        )
        self.matcher = BruteForceMatcher(
            max_distance=self.descriptor_distance_thresh,
            binary=self.extractor.binary if self.extractor is not None else True,
        )

        if self.match_dropped_tracks and not self.extract_descriptor:
            self.logger.warning(
                "match_dropped_tracks is enabled without extract_descriptor; "
                "dropped tracks will never be recovered"
            )

        # Feature collections
        self.ids = FeatureIdAllocator()
        self.features: List[Feature] = []
        self.dropped: List[Feature] = []

        # Frame state
        self.initialized = False
        self.frame_idx = 0
        self.rows: Optional[int] = None
        self.cols: Optional[int] = None
        self.mask: Optional[np.ndarray] = None
        self._updating = False
        self._failure: Optional[str] = None

    @classmethod
    def create(cls, config: Dict = None) -> "Tracker":
        """Build a tracker from a configuration bundle."""
        return cls(config)

    def _validate(self):
        if self.margin < 0:
            raise ValueError(f"margin must be non-negative, got {self.margin}")
        if self.mask_size <= 0:
            raise ValueError(f"mask_size must be positive, got {self.mask_size}")
        if self.num_features_max <= 0:
            raise ValueError(
                f"num_features_max must be positive, got {self.num_features_max}"
            )
        if not 0 <= self.num_features_min <= self.num_features_max:
            raise ValueError(
                f"num_features_min must be in [0, {self.num_features_max}], "
                f"got {self.num_features_min}"
            )
        if self.max_pixel_displacement <= 0:
            raise ValueError(
                f"max_pixel_displacement must be positive, got {self.max_pixel_displacement}"
            )
        if self.descriptor_distance_thresh <= 0 and (
            self.match_dropped_tracks or self.verify_tracks_with_descriptor
        ):
            raise ValueError(
                "descriptor_distance_thresh must be positive when descriptor "
                "matching is enabled"
            )
        if self.track_history <= 0:
            raise ValueError(f"track_history must be positive, got {self.track_history}")

    def update(self, image: Union[np.ndarray, torch.Tensor]) -> TrackerUpdate:
        """
        Process a new frame.

        The first call initializes the tracker (image size, mask, initial
        detection, propagation state). Later calls propagate the active
        features, rebuild the mask, and replenish features when needed.

        Args:
            image: Grayscale or color frame (numpy or torch)

        Returns:
            Summary of the feature set changes in this frame
        """
        if self._updating:
            raise TrackerStateError("Tracker.update is not reentrant")
        if self._failure is not None:
            raise TrackerStateError(
                f"Tracker stopped after a contract violation ({self._failure}); "
                "call reset() before feeding new frames"
            )

        gray = to_grayscale(image)

        self._updating = True
        try:
            if not self.initialized:
                return self._initialize(gray)

            if gray.shape != (self.rows, self.cols):
                self._failure = (
                    f"frame of size {gray.shape[0]}x{gray.shape[1]}, "
                    f"expected {self.rows}x{self.cols}"
                )
                raise TrackerStateError(f"Image size mismatch: {self._failure}")

            return self._update(gray)
        finally:
            self._updating = False

    def _initialize(self, image: np.ndarray) -> TrackerUpdate:
        rows, cols = image.shape
        self.mask = allocate_mask(rows, cols, self.margin)
        self.rows, self.cols = rows, cols
        self.frame_idx += 1

        summary = TrackerUpdate(frame_idx=self.frame_idx, num_active=0, initialized=True)
        self.detect(image, self.num_features_max, summary)

        self.optical_flow.reset(image)
        self.initialized = True

        summary.num_active = len(self.features)
        self.logger.info(
            f"Tracker initialized on {cols}x{rows} frames with "
            f"{len(self.features)} features ({self.optflow_class.name})"
        )
        return summary

    def _update(self, image: np.ndarray) -> TrackerUpdate:
        self.frame_idx += 1
        summary = TrackerUpdate(frame_idx=self.frame_idx, num_active=0)

        self._propagate(image, summary)

        reset_mask(self.mask)
        for feature in self.features:
            mask_out(self.mask, feature.x, feature.y, self.mask_size, self.margin)

        if len(self.features) < self.num_features_min:
            self.detect(image, self.num_features_max - len(self.features), summary)

        # Dropped features that were not recovered are gone for good
        for feature in self.dropped:
            feature.mark_destroyed()
            summary.destroyed_ids.append(feature.feature_id)
        self.dropped = []

        summary.num_active = len(self.features)

        if not self.features:
            self.logger.warning(f"No active features after frame {self.frame_idx}")
        self.logger.debug(
            f"Frame {self.frame_idx}: tracked={len(summary.tracked_ids)} "
            f"dropped={len(summary.dropped_ids)} recovered={len(summary.recovered_ids)} "
            f"new={len(summary.new_ids)} active={summary.num_active}"
        )
        return summary

    def _propagate(self, image: np.ndarray, summary: TrackerUpdate):
        """Move every active feature into ``image``; lost ones go to the dropped pool."""
        points = np.array(
            [feature.position for feature in self.features], dtype=np.float32
        ).reshape(-1, 2)
        result = self.optical_flow.propagate(points, image)

        keep = result.keep.copy()
        descriptors = {}
        if self.verify_tracks_with_descriptor and self.extractor is not None:
            descriptors = self._verify_descriptors(image, result.positions, keep)

        survivors = []
        for i, feature in enumerate(self.features):
            if keep[i]:
                x, y = result.positions[i]
                feature.update(x, y, descriptors.get(i))
                survivors.append(feature)
                summary.tracked_ids.append(feature.feature_id)
            else:
                feature.mark_dropped()
                self.dropped.append(feature)
                summary.dropped_ids.append(feature.feature_id)

        self.features = survivors

    def _verify_descriptors(
        self, image: np.ndarray, positions: np.ndarray, keep: np.ndarray
    ) -> Dict[int, np.ndarray]:
        """
        Re-describe kept features at their new position.

        Clears ``keep`` for features that cannot be described there or whose
        descriptor moved too far from the stored one.

        Returns:
            Mapping from feature index to refreshed descriptor
        """
        keypoints = [
            KeyPoint(
                x=float(positions[i, 0]),
                y=float(positions[i, 1]),
                size=self.features[i].size,
                class_id=i,
            )
            for i in np.flatnonzero(keep)
            if self.features[i].descriptor is not None
        ]
        described, new_descriptors = self.extractor.compute(image, keypoints)

        refreshed = {}
        for kp, descriptor in zip(described, new_descriptors if described else []):
            refreshed[kp.class_id] = descriptor.copy()

        for kp in keypoints:
            i = kp.class_id
            descriptor = refreshed.get(i)
            if descriptor is None:
                keep[i] = False
                continue
            distance = self.matcher.distances(self.features[i].descriptor, descriptor)
            if float(distance[0, 0]) >= self.descriptor_distance_thresh:
                keep[i] = False
                del refreshed[i]

        return refreshed

    def detect(
        self,
        image: np.ndarray,
        num_to_add: int,
        summary: Optional[TrackerUpdate] = None,
    ) -> List[Feature]:
        """
        Detect up to ``num_to_add`` features where the mask allows it.

        Each accepted keypoint either recovers a dropped feature with a
        matching descriptor or becomes a new feature. The mask is stamped
        around every accepted position before the next keypoint is looked at.

        Args:
            image: uint8 grayscale frame
            num_to_add: Maximum number of features to add
            summary: Update summary to record new/recovered ids in (optional)

        Returns:
            Features added to the active set
        """
        if num_to_add <= 0:
            return []

        keypoints = [
            kp
            for kp in self.detector.detect(image)
            if mask_valid(self.mask, kp.x, kp.y, self.margin)
        ]

        descriptors = None
        if self.extractor is not None:
            keypoints, descriptors = self.extractor.compute(image, keypoints)

        added = []
        for i, kp in enumerate(keypoints):
            if len(added) >= num_to_add:
                break
            if not mask_valid(self.mask, kp.x, kp.y, self.margin):
                continue

            descriptor = descriptors[i].copy() if descriptors is not None else None

            feature = None
            if self.match_dropped_tracks and descriptor is not None:
                feature = self.find_match_in_dropped_tracks(descriptor)

            if feature is not None:
                feature.recover(kp.x, kp.y, descriptor)
                if summary is not None:
                    summary.recovered_ids.append(feature.feature_id)
            else:
                feature = Feature(
                    self.ids.next_id(),
                    kp.x,
                    kp.y,
                    descriptor=descriptor,
                    history=self.track_history,
                    size=kp.size,
                )
                if summary is not None:
                    summary.new_ids.append(feature.feature_id)

            self.features.append(feature)
            mask_out(self.mask, kp.x, kp.y, self.mask_size, self.margin)
            added.append(feature)

        if len(added) < num_to_add:
            self.logger.debug(f"Detected {len(added)} of {num_to_add} requested features")

        return added

    def find_match_in_dropped_tracks(self, descriptor: np.ndarray) -> Optional[Feature]:
        """
        Match a new descriptor against the tracks dropped in this frame.

        The closest dropped feature is returned, and removed from the dropped
        pool, if its descriptor distance is below ``descriptor_distance_thresh``.

        Args:
            descriptor: Descriptor of the new detection

        Returns:
            The recovered feature, or None
        """
        candidates = [
            (i, feature)
            for i, feature in enumerate(self.dropped)
            if feature.descriptor is not None
        ]
        if not candidates:
            return None

        match = self.matcher.match_best(
            descriptor, [feature.descriptor for _, feature in candidates]
        )
        if match is None:
            return None

        pool_idx, _ = candidates[match.train_idx]
        return self.dropped.pop(pool_idx)

    def active_ids(self) -> List[int]:
        """Identifiers of the active features."""
        return [feature.feature_id for feature in self.features]

    def reset(self):
        """
        Return to the uninitialized state.

        Every live feature is destroyed; identifiers keep increasing so none
        is ever reused.
        """
        for feature in self.features + self.dropped:
            feature.mark_destroyed()
        self.features = []
        self.dropped = []
        self.initialized = False
        self.frame_idx = 0
        self.rows = None
        self.cols = None
        self.mask = None
        self._failure = None
        self.logger.info("Tracker reset")
