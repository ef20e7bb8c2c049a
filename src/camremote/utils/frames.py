import json
import os
from typing import Optional, Tuple

import cv2
import numpy as np

from ..liveview.packet import LiveviewFrameInfo, LiveviewImage

# BGR colour per frame category; unknown categories fall back to white
CATEGORY_COLORS = {
    1: (0, 255, 0),      # contrast AF
    2: (0, 255, 255),    # phase detection AF
    4: (255, 0, 0),      # face
    5: (0, 0, 255),      # tracking
}


def decode_jpeg(jpeg_data: bytes) -> np.ndarray:
    """Decode liveview JPEG data to a BGR image."""
    buffer = np.frombuffer(jpeg_data, dtype='uint8')
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Liveview image could not be decoded")
    return image


def frame_rectangle(frame, width: int, height: int) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """Pixel corners of a frame whose coordinates are percentages."""
    top_left = (int(frame.top_left[0] * width / 100), int(frame.top_left[1] * height / 100))
    bottom_right = (int(frame.bottom_right[0] * width / 100), int(frame.bottom_right[1] * height / 100))
    return top_left, bottom_right


def draw_frame_info(image: np.ndarray, frame_info: Optional[LiveviewFrameInfo], thickness: int = 2) -> np.ndarray:
    """Draw the frames of ``frame_info`` onto a copy of ``image``."""
    annotated = image.copy()
    if frame_info is None:
        return annotated
    height, width = image.shape[:2]
    for frame in frame_info.frames:
        top_left, bottom_right = frame_rectangle(frame, width, height)
        color = CATEGORY_COLORS.get(frame.category, (255, 255, 255))
        cv2.rectangle(annotated, top_left, bottom_right, color, thickness)
    return annotated


def save_liveview_frame(image: LiveviewImage, frame_info: Optional[LiveviewFrameInfo], directory: str) -> str:
    """
    Save a liveview image as ``<sequence>.jpg`` with its frame info in ``<sequence>.json``.

    Returns:
        Path of the image file
    """
    os.makedirs(directory, exist_ok=True)
    base = os.path.join(directory, str(image.sequence_number))
    with open(base + '.jpg', 'wb') as f:
        f.write(image.jpeg_data)
    if frame_info is not None:
        with open(base + '.json', 'w') as f:
            json.dump(frame_info.to_dict(), f, indent=4)
    return base + '.jpg'
