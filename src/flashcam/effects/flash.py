"""
Brightness / Flash Controller
=============================

Adaptive flash simulation driven by sampled frame brightness.

Per cycle:
    1. Sample brightness of the composited frame (strided, deterministic)
    2. Decide flash: brightness < threshold (strict)
    3. Blend a translucent white overlay when the flash is on

The sample is always taken before the overlay, so the overlay never feeds
back into the next decision.

Flash state lives for one pipeline session and is mutated once per cycle.
"""

import logging

import numpy as np

from flashcam.models.frame import Frame


logger = logging.getLogger(__name__)


def sample_brightness(frame: Frame, stride: int = 100) -> float:
    """
    Mean of (R + G + B) / 3 over every `stride`-th pixel.

    Pixels are taken in row-major order starting at pixel 0.

    Args:
        frame: Frame to sample (not modified)
        stride: Pixel step between samples, >= 1

    Returns:
        Brightness on a 0-255 scale (0.0 for an empty frame)
    """
    if stride < 1:
        raise ValueError("stride must be >= 1")

    samples = frame.pixels.reshape(-1, 4)[::stride, :3]
    if samples.shape[0] == 0:
        return 0.0
    per_pixel = samples.astype(np.float64).sum(axis=1) / 3.0
    return float(per_pixel.mean())


def decide_flash(brightness: float, threshold: float) -> bool:
    """Flash on iff brightness is strictly below the threshold."""
    return brightness < threshold


def apply_flash_overlay(frame: Frame, opacity: float = 0.2) -> None:
    """
    Blend uniform white over R, G, B in place. Alpha is untouched.

    out = in * (1 - opacity) + 255 * opacity
    """
    if not 0.0 <= opacity <= 1.0:
        raise ValueError("opacity must be in [0, 1]")

    rgb = frame.pixels[..., :3]
    blended = rgb.astype(np.float64) * (1.0 - opacity) + 255.0 * opacity
    rgb[...] = np.clip(np.rint(blended), 0, 255).astype(np.uint8)


class FlashController:
    """
    Session-scoped flash state machine.

    Attributes:
        threshold: Brightness below which the flash fires
        sample_stride: Pixel step for brightness sampling
        overlay_opacity: White overlay opacity
        lag_one_cycle: Render the previous cycle's decision instead of
            the current one
        flash_on: Latest decision
        last_brightness: Latest sampled brightness

    Example:
        controller = FlashController(threshold=40.0)
        rendered = controller.process(frame)
    """

    def __init__(
        self,
        threshold: float = 40.0,
        sample_stride: int = 100,
        overlay_opacity: float = 0.2,
        lag_one_cycle: bool = False,
        enabled: bool = True,
    ) -> None:
        if sample_stride < 1:
            raise ValueError("sample_stride must be >= 1")
        if not 0.0 <= overlay_opacity <= 1.0:
            raise ValueError("overlay_opacity must be in [0, 1]")

        self.threshold = threshold
        self.sample_stride = sample_stride
        self.overlay_opacity = overlay_opacity
        self.lag_one_cycle = lag_one_cycle
        self.enabled = enabled

        self.flash_on: bool = False
        self.last_brightness: float = 0.0
        self.cycles: int = 0
        self.flash_cycles: int = 0
        self.toggles: int = 0

    def sample_brightness(self, frame: Frame) -> float:
        return sample_brightness(frame, self.sample_stride)

    def decide_flash(self, brightness: float) -> bool:
        return decide_flash(brightness, self.threshold)

    def apply_flash_overlay(self, frame: Frame) -> None:
        apply_flash_overlay(frame, self.overlay_opacity)

    def process(self, frame: Frame) -> bool:
        """
        Sample, decide and overlay for one cycle.

        Args:
            frame: Composited frame, mutated in place when the flash renders

        Returns:
            True if the overlay was applied to this frame
        """
        if not self.enabled:
            return False

        brightness = self.sample_brightness(frame)
        decision = self.decide_flash(brightness)

        previous = self.flash_on
        render = previous if self.lag_one_cycle else decision

        if decision != previous:
            self.toggles += 1
            logger.info(
                f"Flash {'ON' if decision else 'OFF'}: "
                f"brightness={brightness:.1f}, threshold={self.threshold:.1f}"
            )

        self.flash_on = decision
        self.last_brightness = brightness
        self.cycles += 1

        if render:
            self.apply_flash_overlay(frame)
            self.flash_cycles += 1
        return render

    def reset(self) -> None:
        """Clear session state."""
        self.flash_on = False
        self.last_brightness = 0.0
        self.cycles = 0
        self.flash_cycles = 0
        self.toggles = 0

    def get_metrics(self) -> dict:
        return {
            "flash_on": self.flash_on,
            "brightness": round(self.last_brightness, 2),
            "threshold": self.threshold,
            "flash_cycles": self.flash_cycles,
            "toggles": self.toggles,
        }
