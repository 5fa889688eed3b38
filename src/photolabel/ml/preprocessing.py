"""Image preprocessing pipeline.

Decodes raw bytes with Pillow, applies EXIF orientation, converts any color
model to RGB, stretches the image to the model's input size with bilinear
resampling, scales pixels to ``[0, 1]`` and applies a table-driven
per-channel mean/std step before packing an NHWC tensor.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from photolabel.errors import DecodeError
from photolabel.ml.tensors import InputTensor

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from photolabel.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_INPUT_SIZE: int = 224
PIXEL_SCALE: float = 255.0

# Integer modes Pillow opens 16-bit grayscale files as (PNG, TIFF, PGM).
SIXTEEN_BIT_MODES: frozenset[str] = frozenset({"I", "I;16", "I;16L", "I;16B", "I;16N"})


@dataclass(frozen=True)
class NormalizationSpec:
    """Per-channel ``(value / 255 - mean) / std`` parameters, ordered ``[R, G, B]``."""

    mean: tuple[float, float, float]
    std: tuple[float, float, float]

    def __post_init__(self) -> None:
        if len(self.mean) != 3 or len(self.std) != 3:
            raise ValueError("Normalization mean and std need exactly three channel values")
        if any(s <= 0 for s in self.std):
            raise ValueError(f"Normalization std must be positive, got {self.std}")

    @property
    def is_identity(self) -> bool:
        return self.mean == (0.0, 0.0, 0.0) and self.std == (1.0, 1.0, 1.0)


NORMALIZATION_PRESETS: dict[str, NormalizationSpec] = {
    # Raw [0, 1] input, as expected by the bundled MobileNet classifier.
    "unit": NormalizationSpec(mean=(0.0, 0.0, 0.0), std=(1.0, 1.0, 1.0)),
    "imagenet": NormalizationSpec(mean=(0.485, 0.456, 0.406), std=(0.229, 0.224, 0.225)),
    # [-1, 1] input used by TF-slim style models.
    "symmetric": NormalizationSpec(mean=(0.5, 0.5, 0.5), std=(0.5, 0.5, 0.5)),
}


def get_normalization(name: str) -> NormalizationSpec:
    try:
        return NORMALIZATION_PRESETS[name]
    except KeyError:
        raise KeyError(f"Unknown normalization preset: {name}") from None


def _to_eight_bit(img: Image.Image) -> Image.Image:
    """Rescale 16-bit integer and float grayscale images to 8-bit ``L``.

    Pillow's ``convert`` clips these modes at 255 rather than scaling them.
    Float images are taken to hold values in ``[0, 1]``.
    """
    if img.mode in SIXTEEN_BIT_MODES:
        wide = np.asarray(img).astype(np.int64)
        return Image.fromarray((np.clip(wide, 0, 65535) >> 8).astype(np.uint8))
    if img.mode == "F":
        unit = np.clip(np.asarray(img, dtype=np.float32), 0.0, 1.0)
        return Image.fromarray(np.rint(unit * PIXEL_SCALE).astype(np.uint8))
    return img


class ImagePreprocessor:
    """Turns encoded image bytes into the model's fixed-shape input tensor."""

    def __init__(
        self,
        input_height: int = DEFAULT_INPUT_SIZE,
        input_width: int = DEFAULT_INPUT_SIZE,
        normalization: NormalizationSpec | str = "unit",
        max_image_pixels: int | None = None,
        apply_exif_orientation: bool = True,
    ) -> None:
        if input_height < 1 or input_width < 1:
            raise ValueError(f"Invalid input size: {input_height}x{input_width}")
        self.input_height = input_height
        self.input_width = input_width
        self.normalization = get_normalization(normalization) if isinstance(normalization, str) else normalization
        self.max_image_pixels = max_image_pixels
        self.apply_exif_orientation = apply_exif_orientation

        self._mean = np.asarray(self.normalization.mean, dtype=np.float32)
        self._std = np.asarray(self.normalization.std, dtype=np.float32)

    @classmethod
    def from_settings(cls, settings: Settings) -> ImagePreprocessor:
        """Build a preprocessor from the input size, normalization and limit settings."""
        return cls(
            input_height=settings.input_height,
            input_width=settings.input_width,
            normalization=settings.normalization,
            max_image_pixels=settings.max_image_pixels,
            apply_exif_orientation=settings.apply_exif_orientation,
        )

    @property
    def expected_shape(self) -> tuple[int, int, int, int]:
        """Shape of the tensor ``preprocess`` returns: ``(1, H, W, 3)``."""
        return (1, self.input_height, self.input_width, 3)

    def preprocess(self, image_bytes: bytes) -> InputTensor:
        """Decode, resize and normalize an encoded image.

        Args:
            image_bytes: Raw file bytes (any format Pillow can decode).

        Returns:
            InputTensor of shape [1, input_height, input_width, 3].

        Raises:
            DecodeError: If the bytes cannot be decoded or exceed size limits.
        """
        image = self.decode_image(image_bytes)
        resized = self.resize(image)
        normalized = self.normalize(resized)
        batched = np.ascontiguousarray(normalized[np.newaxis, ...])
        return InputTensor.for_size(batched, self.input_height, self.input_width)

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Args:
            image_bytes: Raw file bytes (any supported format).

        Returns:
            HxWx3 RGB uint8 numpy array.

        Raises:
            DecodeError: If the image cannot be decoded or exceeds size limits.
        """
        if not image_bytes:
            raise DecodeError("Failed to decode image: empty input")

        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                if width < 1 or height < 1:
                    raise DecodeError(f"Invalid image dimensions: {width}x{height}")
                if self.max_image_pixels is not None and width * height > self.max_image_pixels:
                    raise DecodeError(
                        f"Image too large: {width}x{height} exceeds {self.max_image_pixels} pixels",
                    )
                img.load()
                if self.apply_exif_orientation:
                    img = ImageOps.exif_transpose(img)
                rgb = _to_eight_bit(img).convert("RGB")
        except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Failed to decode image: {exc}") from exc
        except (OSError, SyntaxError, ValueError) as exc:
            # Truncated or malformed payloads surface from the decoder plugins.
            raise DecodeError(f"Failed to decode image: {exc}") from exc

        array = np.asarray(rgb, dtype=np.uint8)
        logger.debug("Decoded %dx%d image (mode=%s)", array.shape[1], array.shape[0], rgb.mode)
        return array

    def resize(self, image: NDArray[np.uint8]) -> NDArray[np.uint8]:
        """Stretch an RGB array to the model input size, ignoring aspect ratio."""
        if image.shape[0] == self.input_height and image.shape[1] == self.input_width:
            return image
        resized = Image.fromarray(np.ascontiguousarray(image)).resize(
            (self.input_width, self.input_height),
            resample=Image.Resampling.BILINEAR,
        )
        return np.asarray(resized, dtype=np.uint8)

    def normalize(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Scale to [0, 1] and apply the configured mean/std table."""
        scaled = image.astype(np.float32) / np.float32(PIXEL_SCALE)
        if self.normalization.is_identity:
            return scaled
        return ((scaled - self._mean) / self._std).astype(np.float32)
