import argparse
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

import cv2
import numpy as np
from torch.utils.data import Dataset
from tqdm import tqdm

from ..config import load_config
from ..estimator import (
    EstimatorMessage,
    ImageDirectoryWriter,
    InertialMeas,
    TrajectoryWriter,
    VisualMeas,
)
from ..system import create_system

NANOSECONDS = 1e-9


class EurocSequence(Dataset):
    """
    EuRoC MAV / ASL format sequence loader.

    Directory structure:
    root/
        └── mav0/
            ├── cam0/
            │   ├── data.csv              # timestamp [ns], filename
            │   └── data/                 # Grayscale PNG frames
            └── imu0/
                └── data.csv              # timestamp [ns], gyro xyz, accel xyz

    Indexing returns camera frames; ``messages`` interleaves frames with
    inertial samples in timestamp order.
    """

    def __init__(self, root: Union[str, Path], camera: str = "cam0", imu: str = "imu0"):
        """
        Initialize the sequence.

        Args:
            root: Sequence root (the directory containing ``mav0``)
            camera: Camera sensor directory name
            imu: IMU sensor directory name
        """
        self.root = Path(root)
        self.camera_path = self.root / "mav0" / camera
        self.imu_path = self.root / "mav0" / imu
        self.logger = logging.getLogger(self.__class__.__name__)

        self.frames: List[Tuple[float, Path]] = []
        self.imu = np.zeros((0, 7))
        self._load_metadata()

    def _load_metadata(self):
        camera_csv = self.camera_path / "data.csv"
        if not camera_csv.exists():
            raise ValueError(f"Camera index not found at {camera_csv}")

        for line in camera_csv.read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            stamp, filename = [token.strip() for token in line.split(",")[:2]]
            self.frames.append(
                (int(stamp) * NANOSECONDS, self.camera_path / "data" / filename)
            )
        if not self.frames:
            raise ValueError(f"No frames listed in {camera_csv}")

        imu_csv = self.imu_path / "data.csv"
        if imu_csv.exists():
            imu = np.loadtxt(imu_csv, delimiter=",", comments="#", ndmin=2)
            if imu.size and imu.shape[1] < 7:
                raise ValueError(f"Expected 7 columns in {imu_csv}, got {imu.shape[1]}")
            if imu.size:
                self.imu = imu[:, :7].copy()
                self.imu[:, 0] *= NANOSECONDS
        else:
            self.logger.warning(f"IMU data not found at {imu_csv}")

        self.logger.info(
            f"Loaded {len(self.frames)} frames and {len(self.imu)} inertial samples from {self.root}"
        )

    def __len__(self) -> int:
        return len(self.frames)

    def __getitem__(self, idx: int) -> Tuple[float, np.ndarray]:
        ts, path = self.frames[idx]
        image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise IOError(f"Failed to load image: {path}")
        return ts, image

    def num_messages(self) -> int:
        return len(self.frames) + len(self.imu)

    def messages(self, viz: bool = False) -> Iterator[EstimatorMessage]:
        """
        Yield visual and inertial messages in timestamp order.

        Inertial samples sharing a timestamp with a frame come first.
        """
        i = 0
        for idx, (ts, _) in enumerate(self.frames):
            while i < len(self.imu) and self.imu[i, 0] <= ts:
                yield self._inertial(i, viz)
                i += 1
            _, image = self[idx]
            yield VisualMeas(ts, image, viz=viz)
        while i < len(self.imu):
            yield self._inertial(i, viz)
            i += 1

    def _inertial(self, i: int, viz: bool) -> InertialMeas:
        row = self.imu[i]
        return InertialMeas(row[0], gyro=row[1:4], accel=row[4:7], viz=viz)


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Replay a EuRoC sequence through the tracker")
    parser.add_argument("root", help="Sequence root containing mav0/")
    parser.add_argument("--config", help="JSON or YAML system configuration")
    parser.add_argument("--trajectory", help="Write TUM poses to this file")
    parser.add_argument("--canvas-dir", help="Write annotated frames to this directory")
    parser.add_argument("--max-messages", type=int, default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)

    config = load_config(args.config) if args.config else None
    sequence = EurocSequence(args.root)

    trajectory = TrajectoryWriter(args.trajectory) if args.trajectory else None
    canvas = ImageDirectoryWriter(args.canvas_dir) if args.canvas_dir else None

    system = create_system(config, canvas_publisher=canvas, pose_publisher=trajectory)
    total = sequence.num_messages()
    if args.max_messages is not None:
        total = min(total, args.max_messages)

    system.start()
    try:
        for count, message in enumerate(
            tqdm(sequence.messages(viz=canvas is not None), total=total, unit="msg")
        ):
            if count >= total:
                break
            system.enqueue(message)
    finally:
        system.close()
        if trajectory is not None:
            trajectory.close()


if __name__ == "__main__":
    main()
