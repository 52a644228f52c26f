import cv2
import numpy as np
import pytest

from torchvio.datasets.euroc import EurocSequence, main
from torchvio.estimator import InertialMeas, VisualMeas

FRAME_STAMPS = [1_000_000_000, 1_050_000_000, 1_100_000_000]
IMU_STAMPS = [990_000_000, 1_000_000_000, 1_025_000_000, 1_075_000_000, 1_200_000_000]


@pytest.fixture
def sequence_root(tmp_path, make_texture, translate):
    cam = tmp_path / "mav0" / "cam0"
    (cam / "data").mkdir(parents=True)
    imu = tmp_path / "mav0" / "imu0"
    imu.mkdir(parents=True)

    base = make_texture(rows=120, cols=160, seed=5)
    lines = ["#timestamp [ns],filename"]
    for i, stamp in enumerate(FRAME_STAMPS):
        cv2.imwrite(str(cam / "data" / f"{stamp}.png"), translate(base, i, 0))
        lines.append(f"{stamp},{stamp}.png")
    (cam / "data.csv").write_text("\n".join(lines) + "\n")

    lines = [
        "#timestamp [ns],w_RS_S_x [rad s^-1],w_RS_S_y [rad s^-1],w_RS_S_z [rad s^-1],"
        "a_RS_S_x [m s^-2],a_RS_S_y [m s^-2],a_RS_S_z [m s^-2]"
    ]
    for stamp in IMU_STAMPS:
        lines.append(f"{stamp},0.0,0.0,0.1,0.0,0.0,9.81")
    (imu / "data.csv").write_text("\n".join(lines) + "\n")
    return tmp_path


def test_loads_sequence(sequence_root):
    sequence = EurocSequence(sequence_root)

    assert len(sequence) == 3
    assert sequence.num_messages() == 8
    ts, image = sequence[1]
    assert ts == pytest.approx(1.05)
    assert image.shape == (120, 160)
    assert image.dtype == np.uint8
    assert sequence.imu[0, 0] == pytest.approx(0.99)
    np.testing.assert_allclose(sequence.imu[0, 1:], [0, 0, 0.1, 0, 0, 9.81])


def test_messages_in_timestamp_order(sequence_root):
    messages = list(EurocSequence(sequence_root).messages(viz=True))

    stamps = [m.ts for m in messages]
    assert stamps == sorted(stamps)
    kinds = [type(m) for m in messages]
    assert kinds == [
        InertialMeas,
        InertialMeas,  # shares its timestamp with the first frame
        VisualMeas,
        InertialMeas,
        VisualMeas,
        InertialMeas,
        VisualMeas,
        InertialMeas,
    ]
    assert all(m.viz for m in messages)


def test_missing_camera_index(tmp_path):
    with pytest.raises(ValueError):
        EurocSequence(tmp_path)


def test_missing_imu_is_tolerated(sequence_root):
    (sequence_root / "mav0" / "imu0" / "data.csv").unlink()
    sequence = EurocSequence(sequence_root)

    assert sequence.num_messages() == 3
    assert all(isinstance(m, VisualMeas) for m in sequence.messages())


def test_replay_writes_trajectory(sequence_root, tmp_path):
    trajectory = tmp_path / "trajectory.txt"
    canvas_dir = tmp_path / "canvas"

    main([str(sequence_root), "--trajectory", str(trajectory), "--canvas-dir", str(canvas_dir)])

    lines = trajectory.read_text().splitlines()
    stamps = [float(line.split()[0]) for line in lines]
    # One pose per frame, plus one per inertial sample since viz is on
    assert len(lines) == 8
    assert stamps == sorted(stamps)
    assert len(list(canvas_dir.glob("*.png"))) == 3
