"""
Effects Module
==============

Pixel-level effects applied to each frame, in order:
    - Compositor: background darkening + landmark brightening
    - FlashController: brightness sampling + adaptive flash overlay
"""

from flashcam.effects.compositor import Compositor
from flashcam.effects.flash import (
    FlashController,
    apply_flash_overlay,
    decide_flash,
    sample_brightness,
)


__all__ = [
    "Compositor",
    "FlashController",
    "sample_brightness",
    "decide_flash",
    "apply_flash_overlay",
]
