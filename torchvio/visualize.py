from typing import Iterable, Union

import cv2
import numpy as np
import torch

from .frontend.feature_extraction import to_grayscale
from .frontend.tracking import Feature, TrackStatus

# BGR
NEW_COLOR = (0, 255, 0)
TRACKED_COLOR = (255, 128, 0)
RECOVERED_COLOR = (0, 200, 255)
HISTORY_COLOR = (0, 0, 255)


def draw_tracks(
    image: Union[np.ndarray, torch.Tensor],
    features: Iterable[Feature],
    draw_ids: bool = True,
    draw_history: bool = True,
) -> np.ndarray:
    """
    Render active features on top of a frame.

    Args:
        image: Frame the features were tracked on
        features: Features to draw; dropped and destroyed ones are skipped
        draw_ids: Whether to print each feature id
        draw_history: Whether to draw the recent positions as a polyline

    Returns:
        BGR canvas
    """
    canvas = cv2.cvtColor(to_grayscale(image), cv2.COLOR_GRAY2BGR)

    for feature in features:
        if feature.status not in (TrackStatus.NEW, TrackStatus.TRACKED):
            continue

        if feature.status == TrackStatus.NEW:
            color = NEW_COLOR
        elif feature.num_recoveries > 0:
            color = RECOVERED_COLOR
        else:
            color = TRACKED_COLOR

        if draw_history and len(feature.positions) > 1:
            pts = np.round(np.array(feature.positions)).astype(np.int32).reshape(-1, 1, 2)
            cv2.polylines(canvas, [pts], False, HISTORY_COLOR, 1)

        x, y = feature.position
        center = (int(round(x)), int(round(y)))
        cv2.circle(canvas, center, 3, color, 1)
        if draw_ids:
            cv2.putText(
                canvas,
                str(feature.feature_id),
                (center[0] + 4, center[1] - 4),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.3,
                color,
                1,
            )

    return canvas
