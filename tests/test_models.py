"""
Model Tests
===========

Frame and inference data contracts.
"""

import numpy as np
import pytest

from flashcam.models import (
    Device,
    FaceLandmarkSet,
    Frame,
    InferenceResult,
    Landmark,
    SegmentationMask,
)


class TestFrame:
    """Tests for the RGBA frame container."""

    def test_buffer_length_matches_dimensions(self):
        """Flat buffer is width * height * 4 bytes."""
        frame = Frame.blank(7, 5)
        assert frame.width == 7
        assert frame.height == 5
        assert frame.pixel_count == 35
        assert frame.data.size == 7 * 5 * 4

    def test_blank_fills_channels(self):
        """blank() sets RGB and alpha uniformly."""
        frame = Frame.blank(3, 2, rgb=(10, 20, 30), alpha=99)
        assert (frame.pixels[..., 0] == 10).all()
        assert (frame.pixels[..., 2] == 30).all()
        assert (frame.pixels[..., 3] == 99).all()

    def test_rejects_wrong_dtype(self):
        """Non-uint8 pixels are refused."""
        with pytest.raises(ValueError):
            Frame(0, 0.0, "x", np.zeros((2, 2, 4), dtype=np.float32))

    def test_rejects_wrong_channel_count(self):
        """RGB-only buffers are refused."""
        with pytest.raises(ValueError):
            Frame(0, 0.0, "x", np.zeros((2, 2, 3), dtype=np.uint8))

    def test_copy_is_independent(self):
        """Mutating a copy leaves the original untouched."""
        frame = Frame.blank(2, 2, rgb=(5, 5, 5))
        clone = frame.copy()
        clone.pixels[...] = 0
        assert frame.pixels[0, 0, 0] == 5
        assert clone.frame_id == frame.frame_id

    def test_data_is_a_view(self):
        """Writes through data reach the pixel array."""
        frame = Frame.blank(2, 2)
        frame.data[0] = 123
        assert frame.pixels[0, 0, 0] == 123


class TestInferenceModels:
    """Tests for masks, landmarks and joined results."""

    def test_mask_coerced_to_bool(self):
        """Integer masks become boolean."""
        mask = SegmentationMask(values=np.array([0, 1, 2, 0]))
        assert mask.values.dtype == np.bool_
        assert mask.foreground_count == 2
        assert mask.size == 4

    def test_mask_flat_from_grid(self):
        """2-D masks flatten row-major."""
        mask = SegmentationMask(values=np.array([[True, False], [False, True]]))
        assert mask.flat().tolist() == [True, False, False, True]

    def test_landmark_set_array(self):
        """Points convert to an (N, 2) array."""
        face = FaceLandmarkSet(points=(Landmark(1.5, 2.0), Landmark(3.0, 4.25)))
        arr = face.as_array()
        assert arr.shape == (2, 2)
        assert arr[1, 1] == 4.25
        assert len(face) == 2

    def test_empty_landmark_set(self):
        """An empty face yields an empty (0, 2) array."""
        assert FaceLandmarkSet().as_array().shape == (0, 2)

    def test_result_ok(self):
        """ok is False when any stage reported an error."""
        assert InferenceResult().ok
        assert not InferenceResult(landmark_error=RuntimeError("x")).ok

    def test_device_requires_id(self):
        """Device ids may not be empty."""
        with pytest.raises(ValueError):
            Device(device_id="")
        assert Device(device_id="0").label == ""
