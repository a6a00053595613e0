"""
DeepLab Segmenter
=================

Person segmentation with torchvision DeepLab v3 (MobileNetV3-Large).

This engine:
    - Loads pretrained VOC weights in a worker thread
    - Runs inference in a worker thread (never blocks the event loop)
    - Resizes the class map back to frame size (nearest neighbour)
    - Reports VOC class 15 (person) as foreground

Design Rules:
    - Calls before load() raise InferenceUnavailable
    - Frame pixels are read, never written
"""

import asyncio
import logging
import threading
from typing import Optional

import cv2
import numpy as np
import torch
import torchvision.transforms as T
from torchvision.models.segmentation import deeplabv3_mobilenet_v3_large

from flashcam.errors import InferenceUnavailable
from flashcam.models.frame import Frame
from flashcam.models.inference import SegmentationMask


logger = logging.getLogger(__name__)


class DeepLabSegmenter:
    """
    DeepLab v3 with MobileNetV3-Large backbone.

    Attributes:
        device: Torch device string ("cpu", "cuda", "mps")
        input_size: Shorter side the frame is resized to before inference
    """

    PERSON_CLASS = 15

    def __init__(self, device: str = "cpu", input_size: int = 256) -> None:
        self.device = torch.device(device)
        self.input_size = input_size

        self._model: Optional[torch.nn.Module] = None
        self._lock = threading.Lock()
        self._preprocess = T.Compose([
            T.ToPILImage(),
            T.Resize(input_size),
            T.ToTensor(),
            T.Normalize(mean=[0.485, 0.456, 0.406], std=[0.229, 0.224, 0.225]),
        ])

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    async def load(self) -> None:
        if self._model is not None:
            return
        await asyncio.to_thread(self._load_model)

    def _load_model(self) -> None:
        logger.info("Loading DeepLab v3 MobileNetV3-Large...")
        model = deeplabv3_mobilenet_v3_large(
            weights="DeepLabV3_MobileNet_V3_Large_Weights.DEFAULT"
        )
        model.to(self.device)
        model.eval()
        self._model = model
        logger.info(f"DeepLab model ready on {self.device}")

    async def segment(self, frame: Frame) -> SegmentationMask:
        if self._model is None:
            raise InferenceUnavailable("DeepLab model not loaded", stage="segmentation")
        rgb = np.ascontiguousarray(frame.pixels[..., :3])
        person = await asyncio.to_thread(self._run, rgb)
        return SegmentationMask(values=person)

    @torch.no_grad()
    def _run(self, rgb: np.ndarray) -> np.ndarray:
        h, w = rgb.shape[:2]
        # One model instance, one inference at a time
        with self._lock:
            input_tensor = self._preprocess(rgb).unsqueeze(0).to(self.device)
            output = self._model(input_tensor)["out"]
            pred = output.argmax(dim=1).squeeze(0).cpu().numpy()

        pred_resized = cv2.resize(
            pred.astype(np.uint8), (w, h), interpolation=cv2.INTER_NEAREST
        )
        return pred_resized == self.PERSON_CLASS
