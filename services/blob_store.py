"""In-memory map from image id to captured image."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from models.capture_models import CapturedImage, RecognitionAnnotation

LOGGER = logging.getLogger(__name__)


class BlobStore:
    """Hold captured images by id.

    Also acts as a recognition target: the recognition queue reads the
    payload and writes the annotation back by image id, so a result for an
    image that has since been deleted simply finds nothing.
    """

    def __init__(self) -> None:
        self._images: Dict[str, CapturedImage] = {}

    def put(self, image: CapturedImage) -> None:
        self._images[image.id] = image

    def get(self, image_id: str) -> Optional[CapturedImage]:
        return self._images.get(image_id)

    def remove(self, image_id: str) -> Optional[CapturedImage]:
        return self._images.pop(image_id, None)

    def get_many(self, image_ids: Iterable[str]) -> List[CapturedImage]:
        """Return images for `image_ids` in order, skipping missing ids."""
        return [self._images[i] for i in image_ids if i in self._images]

    def clear(self) -> None:
        self._images.clear()

    def __contains__(self, image_id: object) -> bool:
        return image_id in self._images

    def __len__(self) -> int:
        return len(self._images)

    # Recognition target protocol

    def load_recognition_payload(self, key: str) -> Optional[bytes]:
        image = self._images.get(key)
        return image.data if image is not None else None

    def store_recognition(self, key: str, annotation: RecognitionAnnotation) -> bool:
        image = self._images.get(key)
        if image is None:
            LOGGER.debug("Image %s removed before recognition finished; dropping result", key)
            return False
        image.annotation = annotation
        return True
