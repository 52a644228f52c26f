import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

import cv2
import numpy as np


class OpticalFlowType(Enum):
    """Category of optical flow algorithm used for low-level feature tracking."""

    LUCAS_KANADE = 0
    FARNEBACK = 1

    @classmethod
    def parse(cls, value: Union[str, int, "OpticalFlowType"]) -> "OpticalFlowType":
        """
        Parse an optical flow selector.

        Args:
            value: Enum member, integer selector, or name
                ("lucas-kanade", "lk", "klt", "farneback")

        Returns:
            The selected optical flow type
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid optical flow selector: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValueError(f"Invalid optical flow selector: {value}") from None
        if isinstance(value, str):
            name = value.strip().lower().replace("_", "-")
            if name in ("lucas-kanade", "lk", "klt", "pyrlk"):
                return cls.LUCAS_KANADE
            if name in ("farneback", "fb"):
                return cls.FARNEBACK
        raise ValueError(f"Invalid optical flow selector: {value!r}")


@dataclass
class LKParams:
    """Pyramidal Lucas-Kanade parameters."""

    win_size: int = 15
    max_level: int = 5
    max_iter: int = 15
    eps: float = 0.01

    @classmethod
    def from_config(cls, config: Dict) -> "LKParams":
        config = config or {}
        params = cls(
            win_size=int(config.get("win_size", cls.win_size)),
            max_level=int(config.get("max_level", cls.max_level)),
            max_iter=int(config.get("max_iter", cls.max_iter)),
            eps=float(config.get("eps", cls.eps)),
        )
        params.validate()
        return params

    def validate(self):
        if self.win_size <= 0:
            raise ValueError(f"KLT win_size must be positive, got {self.win_size}")
        if self.max_level <= 0:
            raise ValueError(f"KLT max_level must be positive, got {self.max_level}")
        if self.max_iter <= 0:
            raise ValueError(f"KLT max_iter must be positive, got {self.max_iter}")
        if self.eps <= 0:
            raise ValueError(f"KLT eps must be positive, got {self.eps}")


@dataclass
class FarnebackParams:
    """Farneback dense optical flow parameters."""

    num_levels: int = 3
    pyr_scale: float = 0.5
    win_size: int = 13
    num_iter: int = 10
    poly_n: int = 5
    poly_sigma: float = 1.1
    use_initial_flow: bool = False
    sampling: str = "bilinear"

    @classmethod
    def from_config(cls, config: Dict) -> "FarnebackParams":
        config = config or {}
        params = cls(
            num_levels=int(config.get("num_levels", cls.num_levels)),
            pyr_scale=float(config.get("pyr_scale", cls.pyr_scale)),
            win_size=int(config.get("win_size", cls.win_size)),
            num_iter=int(config.get("num_iter", cls.num_iter)),
            poly_n=int(config.get("poly_n", cls.poly_n)),
            poly_sigma=float(config.get("poly_sigma", cls.poly_sigma)),
            use_initial_flow=bool(config.get("use_initial_flow", cls.use_initial_flow)),
            sampling=str(config.get("sampling", cls.sampling)).lower(),
        )
        params.validate()
        return params

    def validate(self):
        if self.num_levels <= 0:
            raise ValueError(f"Farneback num_levels must be positive, got {self.num_levels}")
        if not 0.0 < self.pyr_scale < 1.0:
            raise ValueError(f"Farneback pyr_scale must be in (0, 1), got {self.pyr_scale}")
        if self.win_size <= 0:
            raise ValueError(f"Farneback win_size must be positive, got {self.win_size}")
        if self.num_iter <= 0:
            raise ValueError(f"Farneback num_iter must be positive, got {self.num_iter}")
        if self.poly_n <= 0 or self.poly_sigma <= 0:
            raise ValueError("Farneback poly_n and poly_sigma must be positive")
        if self.sampling not in ("bilinear", "nearest"):
            raise ValueError(f"Unknown flow sampling mode: {self.sampling}")


@dataclass
class FlowResult:
    """Result of propagating a set of points into a new frame."""

    positions: np.ndarray  # (N, 2) float32 predicted positions
    keep: np.ndarray  # (N,) bool, False for points to drop


def _inside(points: np.ndarray, rows: int, cols: int) -> np.ndarray:
    x = points[:, 0]
    y = points[:, 1]
    return (
        np.isfinite(x)
        & np.isfinite(y)
        & (x >= 0)
        & (x <= cols - 1)
        & (y >= 0)
        & (y <= rows - 1)
    )


class OpticalFlow(ABC):
    """Base class for the frame-to-frame propagation backends."""

    def __init__(self):
        self.prev_image: Optional[np.ndarray] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    def reset(self, image: np.ndarray):
        """
        Initialize the propagation state from a frame.

        Args:
            image: uint8 grayscale frame
        """
        self._advance(image)

    def _advance(self, image: np.ndarray):
        # Callers may decode every frame into the same buffer
        self.prev_image = image.copy()

    @abstractmethod
    def propagate(self, points: np.ndarray, image: np.ndarray) -> FlowResult:
        """
        Propagate points from the previous frame into ``image``.

        The backend keeps a copy of ``image`` as the previous frame for the
        next call.

        Args:
            points: (N, 2) positions in the previous frame
            image: uint8 grayscale current frame

        Returns:
            Predicted positions and keep/drop flags
        """
        pass

    def _check_ready(self):
        if self.prev_image is None:
            raise RuntimeError(f"{self.__class__.__name__} used before reset()")


class PyramidalLKFlow(OpticalFlow):
    """
    Sparse pyramidal Lucas-Kanade propagation.

    A point is kept iff the tracker converged, its new position lies inside
    the image, and it moved at most ``max_pixel_displacement`` pixels.
    """

    def __init__(self, params: LKParams, max_pixel_displacement: float):
        super().__init__()
        params.validate()
        if max_pixel_displacement <= 0:
            raise ValueError(
                f"max_pixel_displacement must be positive, got {max_pixel_displacement}"
            )
        self.params = params
        self.max_pixel_displacement = float(max_pixel_displacement)
        self.criteria = (
            cv2.TERM_CRITERIA_COUNT | cv2.TERM_CRITERIA_EPS,
            params.max_iter,
            params.eps,
        )

    def propagate(self, points: np.ndarray, image: np.ndarray) -> FlowResult:
        self._check_ready()
        points = np.asarray(points, dtype=np.float32).reshape(-1, 2)

        if len(points) == 0:
            self._advance(image)
            return FlowResult(
                positions=np.zeros((0, 2), dtype=np.float32),
                keep=np.zeros(0, dtype=bool),
            )

        # OpenCV builds both pyramids from the stored and current frames
        new_points, status, _ = cv2.calcOpticalFlowPyrLK(
            self.prev_image,
            image,
            points.reshape(-1, 1, 2),
            None,
            winSize=(self.params.win_size, self.params.win_size),
            maxLevel=self.params.max_level,
            criteria=self.criteria,
        )
        new_points = new_points.reshape(-1, 2).astype(np.float32)
        status = status.reshape(-1).astype(bool)

        displacement = np.linalg.norm(new_points - points, axis=1)
        keep = (
            status
            & _inside(new_points, image.shape[0], image.shape[1])
            & (displacement <= self.max_pixel_displacement)
        )

        self._advance(image)
        return FlowResult(positions=new_points, keep=keep)


class FarnebackFlow(OpticalFlow):
    """
    Dense Farneback propagation.

    Every point is translated by the flow vector sampled at its position. No
    displacement veto is applied; points leaving the image are dropped.
    """

    def __init__(self, params: FarnebackParams):
        super().__init__()
        params.validate()
        self.params = params
        self.flow: Optional[np.ndarray] = None

    def reset(self, image: np.ndarray):
        super().reset(image)
        self.flow = None

    def propagate(self, points: np.ndarray, image: np.ndarray) -> FlowResult:
        self._check_ready()
        points = np.asarray(points, dtype=np.float32).reshape(-1, 2)

        flags = 0
        initial_flow = None
        if self.params.use_initial_flow and self.flow is not None:
            flags |= cv2.OPTFLOW_USE_INITIAL_FLOW
            initial_flow = self.flow

        self.flow = cv2.calcOpticalFlowFarneback(
            self.prev_image,
            image,
            initial_flow,
            self.params.pyr_scale,
            self.params.num_levels,
            self.params.win_size,
            self.params.num_iter,
            self.params.poly_n,
            self.params.poly_sigma,
            flags,
        )
        self._advance(image)

        if len(points) == 0:
            return FlowResult(
                positions=np.zeros((0, 2), dtype=np.float32),
                keep=np.zeros(0, dtype=bool),
            )

        rows, cols = image.shape[:2]
        valid_source = _inside(points, rows, cols)
        displacement = self.sample(points, valid_source)
        new_points = (points + displacement).astype(np.float32)
        keep = valid_source & _inside(new_points, rows, cols)

        return FlowResult(positions=new_points, keep=keep)

    def sample(self, points: np.ndarray, valid: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Sample the current flow field at (N, 2) positions.

        Positions flagged invalid get a zero displacement.
        """
        if self.flow is None:
            raise RuntimeError("No flow field computed yet")

        rows, cols = self.flow.shape[:2]
        points = np.asarray(points, dtype=np.float32).reshape(-1, 2)
        if valid is None:
            valid = _inside(points, rows, cols)

        displacement = np.zeros_like(points)
        if not np.any(valid):
            return displacement

        x = np.clip(points[valid, 0], 0, cols - 1)
        y = np.clip(points[valid, 1], 0, rows - 1)

        if self.params.sampling == "nearest":
            xi = np.clip(np.floor(x + 0.5).astype(int), 0, cols - 1)
            yi = np.clip(np.floor(y + 0.5).astype(int), 0, rows - 1)
            displacement[valid] = self.flow[yi, xi]
            return displacement

        x0 = np.floor(x).astype(int)
        y0 = np.floor(y).astype(int)
        x1 = np.minimum(x0 + 1, cols - 1)
        y1 = np.minimum(y0 + 1, rows - 1)
        wx = (x - x0)[:, None]
        wy = (y - y0)[:, None]

        top = self.flow[y0, x0] * (1 - wx) + self.flow[y0, x1] * wx
        bottom = self.flow[y1, x0] * (1 - wx) + self.flow[y1, x1] * wx
        displacement[valid] = top * (1 - wy) + bottom * wy
        return displacement


def create_optical_flow(
    flow_type: Union[str, int, OpticalFlowType], config: Dict
) -> OpticalFlow:
    """
    Build the propagation backend selected by ``flow_type``.

    Args:
        flow_type: Optical flow selector
        config: Tracker configuration (reads the "KLT" or "farneback" block)

    Returns:
        Configured optical flow backend
    """
    flow_type = OpticalFlowType.parse(flow_type)
    if flow_type == OpticalFlowType.LUCAS_KANADE:
        return PyramidalLKFlow(
            LKParams.from_config(config.get("KLT", {})),
            config.get("max_pixel_displacement", 64),
        )
    return FarnebackFlow(FarnebackParams.from_config(config.get("farneback", {})))
