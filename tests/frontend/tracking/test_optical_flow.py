from unittest.mock import patch

import numpy as np
import pytest

from torchvio.frontend.tracking.optical_flow import (
    FarnebackFlow,
    FarnebackParams,
    LKParams,
    OpticalFlowType,
    PyramidalLKFlow,
    create_optical_flow,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("lucas-kanade", OpticalFlowType.LUCAS_KANADE),
        ("KLT", OpticalFlowType.LUCAS_KANADE),
        ("lucas_kanade", OpticalFlowType.LUCAS_KANADE),
        (0, OpticalFlowType.LUCAS_KANADE),
        ("farneback", OpticalFlowType.FARNEBACK),
        (1, OpticalFlowType.FARNEBACK),
        (OpticalFlowType.FARNEBACK, OpticalFlowType.FARNEBACK),
    ],
)
def test_parse_selector(value, expected):
    assert OpticalFlowType.parse(value) == expected


@pytest.mark.parametrize("value", ["horn-schunck", 2, -1, True, None, 1.0])
def test_parse_invalid_selector(value):
    with pytest.raises(ValueError):
        OpticalFlowType.parse(value)


@pytest.mark.parametrize(
    "block",
    [{"win_size": 0}, {"max_level": 0}, {"max_iter": -3}, {"eps": 0}],
)
def test_lk_params_validation(block):
    with pytest.raises(ValueError):
        LKParams.from_config(block)


@pytest.mark.parametrize(
    "block",
    [
        {"num_levels": 0},
        {"pyr_scale": 1.0},
        {"pyr_scale": 0.0},
        {"win_size": -1},
        {"num_iter": 0},
        {"poly_n": 0},
        {"sampling": "cubic"},
    ],
)
def test_farneback_params_validation(block):
    with pytest.raises(ValueError):
        FarnebackParams.from_config(block)


def test_create_optical_flow_reads_blocks():
    flow = create_optical_flow(
        "klt", {"KLT": {"win_size": 21, "max_level": 3}, "max_pixel_displacement": 10}
    )
    assert isinstance(flow, PyramidalLKFlow)
    assert flow.params.win_size == 21
    assert flow.params.max_level == 3
    assert flow.max_pixel_displacement == 10

    flow = create_optical_flow(1, {"farneback": {"sampling": "nearest"}})
    assert isinstance(flow, FarnebackFlow)
    assert flow.params.sampling == "nearest"


def test_propagate_before_reset():
    flow = PyramidalLKFlow(LKParams(), 64)
    with pytest.raises(RuntimeError):
        flow.propagate(np.zeros((1, 2)), np.zeros((50, 50), dtype=np.uint8))


def test_lk_tracks_translation(texture, translate):
    flow = PyramidalLKFlow(LKParams(), 64)
    flow.reset(texture)

    points = np.array([[x, y] for x in range(60, 260, 40) for y in range(60, 180, 40)], np.float32)
    result = flow.propagate(points, translate(texture, 3, 2))

    assert result.positions.shape == points.shape
    assert result.keep.sum() >= len(points) // 2
    motion = result.positions[result.keep] - points[result.keep]
    assert np.median(motion[:, 0]) == pytest.approx(3, abs=0.5)
    assert np.median(motion[:, 1]) == pytest.approx(2, abs=0.5)


def test_lk_displacement_veto(texture, translate):
    flow = PyramidalLKFlow(LKParams(), max_pixel_displacement=2)
    flow.reset(texture)

    points = np.array([[x, y] for x in range(60, 260, 40) for y in range(60, 180, 40)], np.float32)
    result = flow.propagate(points, translate(texture, 6, 0))

    displacement = np.linalg.norm(result.positions - points, axis=1)
    assert np.all(displacement[result.keep] <= 2)


def test_lk_drops_points_leaving_image(texture, translate):
    rows, cols = texture.shape
    flow = PyramidalLKFlow(LKParams(), 64)
    flow.reset(texture)

    points = np.array([[cols - 3, 100], [5, 150], [120, 100]], np.float32)
    tracked = np.array([[[cols + 7, 100]], [[5, -4]], [[123, 100]]], np.float32)
    status = np.ones((3, 1), np.uint8)

    with patch(
        "torchvio.frontend.tracking.optical_flow.cv2.calcOpticalFlowPyrLK",
        return_value=(tracked, status, np.zeros((3, 1), np.float32)),
    ):
        result = flow.propagate(points, translate(texture, 10, 0))

    assert list(result.keep) == [False, False, True]


def test_lk_drops_unconverged_points(texture):
    flow = PyramidalLKFlow(LKParams(), 64)
    flow.reset(texture)

    points = np.array([[50, 50], [60, 60]], np.float32)
    status = np.array([[0], [1]], np.uint8)
    with patch(
        "torchvio.frontend.tracking.optical_flow.cv2.calcOpticalFlowPyrLK",
        return_value=(points.reshape(-1, 1, 2).copy(), status, np.zeros((2, 1), np.float32)),
    ):
        result = flow.propagate(points, texture)

    assert list(result.keep) == [False, True]


def test_lk_keeps_only_points_inside(texture, translate):
    rows, cols = texture.shape
    flow = PyramidalLKFlow(LKParams(), 64)
    flow.reset(texture)

    points = np.array([[cols - 3, 100], [cols - 2, 150], [120, 100]], np.float32)
    result = flow.propagate(points, translate(texture, 10, 0))

    kept = result.positions[result.keep]
    assert np.all((kept[:, 0] >= 0) & (kept[:, 0] <= cols - 1))
    assert np.all((kept[:, 1] >= 0) & (kept[:, 1] <= rows - 1))


def test_lk_empty_points_advances_frame(texture, translate):
    flow = PyramidalLKFlow(LKParams(), 64)
    flow.reset(texture)
    shifted = translate(texture, 1, 0)

    result = flow.propagate(np.zeros((0, 2)), shifted)

    assert result.positions.shape == (0, 2)
    assert result.keep.shape == (0,)
    assert flow.prev_image is not shifted
    np.testing.assert_array_equal(flow.prev_image, shifted)


@pytest.mark.parametrize("flow_type", [OpticalFlowType.LUCAS_KANADE, OpticalFlowType.FARNEBACK])
def test_previous_frame_survives_buffer_reuse(texture, translate, flow_type):
    flow = create_optical_flow(flow_type, {})
    buffer = texture.copy()
    flow.reset(buffer)

    buffer[...] = translate(texture, 3, 2)
    np.testing.assert_array_equal(flow.prev_image, texture)

    points = np.array([[x, y] for x in range(60, 260, 40) for y in range(60, 180, 40)], np.float32)
    result = flow.propagate(points, buffer)

    motion = (result.positions - points)[result.keep]
    assert len(motion) > len(points) // 2
    assert np.median(motion[:, 0]) == pytest.approx(3, abs=1.0)
    assert np.median(motion[:, 1]) == pytest.approx(2, abs=1.0)


def test_farneback_tracks_translation(texture, translate):
    flow = FarnebackFlow(FarnebackParams())
    flow.reset(texture)

    points = np.array([[x, y] for x in range(60, 260, 40) for y in range(60, 180, 40)], np.float32)
    result = flow.propagate(points, translate(texture, 3, 2))

    assert np.all(result.keep)
    motion = result.positions - points
    assert np.median(motion[:, 0]) == pytest.approx(3, abs=1.0)
    assert np.median(motion[:, 1]) == pytest.approx(2, abs=1.0)


def test_farneback_drops_out_of_bounds():
    rows, cols = 50, 60
    image = np.zeros((rows, cols), dtype=np.uint8)
    field = np.zeros((rows, cols, 2), dtype=np.float32)
    field[..., 0] = 5.0

    flow = FarnebackFlow(FarnebackParams())
    flow.reset(image)
    points = np.array([[10, 10], [57, 20], [-1, 20]], np.float32)
    with patch(
        "torchvio.frontend.tracking.optical_flow.cv2.calcOpticalFlowFarneback",
        return_value=field,
    ):
        result = flow.propagate(points, image)

    assert np.allclose(result.positions[0], [15.0, 10.0])
    assert list(result.keep) == [True, False, False]
    # Invalid source positions get no displacement
    assert np.allclose(result.positions[2], [-1.0, 20.0])


def test_farneback_sampling_modes():
    rows, cols = 30, 40
    xs, ys = np.meshgrid(np.arange(cols, dtype=np.float32), np.arange(rows, dtype=np.float32))
    field = np.stack([xs, ys], axis=2)

    bilinear = FarnebackFlow(FarnebackParams(sampling="bilinear"))
    bilinear.flow = field
    sampled = bilinear.sample(np.array([[10.25, 5.75]], np.float32))
    assert sampled[0, 0] == pytest.approx(10.25, abs=1e-4)
    assert sampled[0, 1] == pytest.approx(5.75, abs=1e-4)

    nearest = FarnebackFlow(FarnebackParams(sampling="nearest"))
    nearest.flow = field
    sampled = nearest.sample(np.array([[10.25, 5.75], [10.5, 5.5]], np.float32))
    assert tuple(sampled[0]) == (10.0, 6.0)
    assert tuple(sampled[1]) == (11.0, 6.0)


def test_farneback_reset_clears_flow(texture, translate):
    flow = FarnebackFlow(FarnebackParams(use_initial_flow=True))
    flow.reset(texture)
    flow.propagate(np.zeros((0, 2)), translate(texture, 1, 1))
    assert flow.flow is not None

    flow.reset(texture)
    assert flow.flow is None
    with pytest.raises(RuntimeError):
        flow.sample(np.zeros((1, 2)))
