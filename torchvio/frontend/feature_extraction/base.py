import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

import cv2
import numpy as np
import torch


class FeatureType(Enum):
    """Enum for the OpenCV detector/extractor backends."""

    FAST = 1
    ORB = 2
    BRISK = 3
    AGAST = 4
    GFTT = 5
    SIFT = 6

    @classmethod
    def parse(cls, name: Union[str, "FeatureType"]) -> "FeatureType":
        """Look up a feature type by (case-insensitive) name."""
        if isinstance(name, cls):
            return name
        try:
            return cls[str(name).upper()]
        except KeyError:
            raise ValueError(f"Unknown feature type: {name}") from None


# Feature types able to compute descriptors
EXTRACTOR_TYPES = (FeatureType.ORB, FeatureType.BRISK, FeatureType.SIFT)


class KeyPoint:
    """Class representing a keypoint."""

    def __init__(
        self,
        x: float,
        y: float,
        response: float = 0.0,
        size: float = 1.0,
        angle: float = -1.0,
        octave: int = 0,
        class_id: int = -1,
    ):
        self.x = x
        self.y = y
        self.response = response  # Strength of the keypoint
        self.size = size  # Diameter of the meaningful keypoint neighborhood
        self.angle = angle  # Orientation in degrees (-1 if not applicable)
        self.octave = octave  # Pyramid layer the keypoint was extracted from
        self.class_id = class_id  # Caller tag, preserved by OpenCV

    def pt(self) -> Tuple[float, float]:
        """Get point coordinates."""
        return (self.x, self.y)

    @staticmethod
    def from_cv2(kp: cv2.KeyPoint) -> "KeyPoint":
        """Create from an OpenCV keypoint."""
        return KeyPoint(
            x=float(kp.pt[0]),
            y=float(kp.pt[1]),
            response=float(kp.response),
            size=float(kp.size),
            angle=float(kp.angle),
            octave=int(kp.octave),
            class_id=int(kp.class_id),
        )

    def to_cv2(self) -> cv2.KeyPoint:
        """Convert to an OpenCV keypoint."""
        return cv2.KeyPoint(
            float(self.x),
            float(self.y),
            float(self.size),
            float(self.angle),
            float(self.response),
            int(self.octave),
            int(self.class_id),
        )

    def __repr__(self) -> str:
        return f"KeyPoint(x={self.x:.2f}, y={self.y:.2f}, response={self.response:.4f})"


def to_grayscale(image: Union[np.ndarray, torch.Tensor]) -> np.ndarray:
    """
    Convert an input frame to a contiguous single-channel uint8 image.

    Args:
        image: numpy array (H, W), (H, W, 3) BGR or (H, W, 4) BGRA, or
            torch tensor (H, W) or (C, H, W) with C in {1, 3}

    Returns:
        uint8 numpy array of shape (H, W)
    """
    if isinstance(image, torch.Tensor):
        tensor = image.detach().cpu()
        if tensor.dim() == 3 and tensor.shape[0] == 1:
            tensor = tensor[0]
        elif tensor.dim() == 3 and tensor.shape[0] == 3:
            # Tensors follow the RGB convention
            weights = torch.tensor([0.299, 0.587, 0.114], dtype=torch.float32).view(3, 1, 1)
            tensor = torch.sum(tensor.float() * weights, dim=0)
        elif tensor.dim() != 2:
            raise ValueError(f"Unsupported image format with shape {tuple(image.shape)}")
        array = tensor.numpy()
    elif isinstance(image, np.ndarray):
        array = image
        if array.ndim == 3 and array.shape[2] == 1:
            array = array[:, :, 0]
        elif array.ndim == 3 and array.shape[2] in (3, 4):
            if array.dtype != np.uint8:
                array = _scale_to_uint8(array)
            code = cv2.COLOR_BGR2GRAY if array.shape[2] == 3 else cv2.COLOR_BGRA2GRAY
            array = cv2.cvtColor(array, code)
        elif array.ndim != 2:
            raise ValueError(f"Unsupported image format with shape {array.shape}")
    else:
        raise ValueError(f"Unsupported image type: {type(image)}")

    if array.size == 0:
        raise ValueError("Empty image")

    if array.dtype != np.uint8:
        array = _scale_to_uint8(array)

    return np.ascontiguousarray(array)


def _scale_to_uint8(array: np.ndarray) -> np.ndarray:
    array = array.astype(np.float32)
    # Floating point frames in [0, 1]
    if array.size > 0 and array.max() <= 1.0 + 1e-6:
        array = array * 255.0
    return np.clip(np.rint(array), 0, 255).astype(np.uint8)


def _create_feature2d(feature_type: FeatureType, params: Dict) -> cv2.Feature2D:
    """Instantiate the OpenCV Feature2D implementation for ``feature_type``."""
    params = dict(params or {})
    if feature_type == FeatureType.FAST:
        return cv2.FastFeatureDetector_create(**params)
    elif feature_type == FeatureType.ORB:
        return cv2.ORB_create(**params)
    elif feature_type == FeatureType.BRISK:
        return cv2.BRISK_create(**params)
    elif feature_type == FeatureType.AGAST:
        return cv2.AgastFeatureDetector_create(**params)
    elif feature_type == FeatureType.GFTT:
        return cv2.GFTTDetector_create(**params)
    elif feature_type == FeatureType.SIFT:
        return cv2.SIFT_create(**params)
    raise ValueError(f"Unsupported feature type: {feature_type}")


class FeatureDetector:
    """Keypoint detector backed by an OpenCV Feature2D."""

    def __init__(self, feature_type: FeatureType, params: Optional[Dict] = None):
        self.feature_type = FeatureType.parse(feature_type)
        self.params = dict(params or {})
        self._impl = _create_feature2d(self.feature_type, self.params)
        self.logger = logging.getLogger(self.__class__.__name__)

    def detect(self, image: np.ndarray) -> List[KeyPoint]:
        """
        Detect keypoints on a grayscale image.

        Args:
            image: uint8 image (H, W)

        Returns:
            Keypoints sorted by decreasing response; equal responses keep the
            detector's order
        """
        cv_keypoints = self._impl.detect(image, None)
        keypoints = [KeyPoint.from_cv2(kp) for kp in cv_keypoints]
        keypoints.sort(key=lambda kp: -kp.response)
        self.logger.debug(f"{self.feature_type.name} detected {len(keypoints)} keypoints")
        return keypoints


class DescriptorExtractor:
    """Descriptor extractor backed by an OpenCV Feature2D."""

    def __init__(self, feature_type: FeatureType, params: Optional[Dict] = None):
        self.feature_type = FeatureType.parse(feature_type)
        if self.feature_type not in EXTRACTOR_TYPES:
            raise ValueError(f"{self.feature_type.name} cannot compute descriptors")
        self.params = dict(params or {})
        self._impl = _create_feature2d(self.feature_type, self.params)

    @property
    def binary(self) -> bool:
        """Whether descriptors are compared with the Hamming distance."""
        return self.feature_type != FeatureType.SIFT

    def compute(
        self, image: np.ndarray, keypoints: List[KeyPoint]
    ) -> Tuple[List[KeyPoint], Optional[np.ndarray]]:
        """
        Compute descriptors for keypoints.

        OpenCV removes keypoints it cannot describe (e.g. too close to the
        border), so the returned keypoints may be a subset of the input.

        Args:
            image: uint8 image (H, W)
            keypoints: Keypoints to describe

        Returns:
            Tuple of (described keypoints, descriptors (N, D) or None if empty)
        """
        if not keypoints:
            return [], None

        cv_keypoints = [kp.to_cv2() for kp in keypoints]
        cv_keypoints, descriptors = self._impl.compute(image, cv_keypoints)
        if descriptors is None or len(cv_keypoints) == 0:
            return [], None

        described = [KeyPoint.from_cv2(kp) for kp in cv_keypoints]

        # ORB regroups keypoints by pyramid octave, restore the response order
        order = sorted(range(len(described)), key=lambda i: -described[i].response)
        described = [described[i] for i in order]
        descriptors = descriptors[order]

        return described, descriptors


def create_detector(name: Union[str, FeatureType], config: Dict = None) -> FeatureDetector:
    """
    Create a detector from its name and the configuration bundle.

    Per-algorithm parameters are read from ``config[name]``.
    """
    feature_type = FeatureType.parse(name)
    params = (config or {}).get(feature_type.name, {})
    return FeatureDetector(feature_type, params)


def create_extractor(
    name: Union[str, FeatureType], config: Dict = None
) -> DescriptorExtractor:
    """Create a descriptor extractor from its name and the configuration bundle."""
    feature_type = FeatureType.parse(name)
    params = (config or {}).get(feature_type.name, {})
    return DescriptorExtractor(feature_type, params)
