"""Fixed-shape tensor wrappers passed between pipeline stages.

Shapes are validated when a wrapper is built so that a mismatch surfaces at
the stage boundary instead of deep inside the numeric runtime.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from photolabel.errors import InferenceError, ShapeMismatchError

BATCH_SIZE: int = 1
CHANNELS: int = 3


def _check_nhwc(shape: tuple[int, ...], stage: str) -> None:
    if len(shape) != 4 or shape[0] != BATCH_SIZE or shape[3] != CHANNELS or shape[1] < 1 or shape[2] < 1:
        raise ShapeMismatchError(expected=(BATCH_SIZE, "H", "W", CHANNELS), actual=shape, stage=stage)


@dataclass(frozen=True, eq=False)
class InputTensor:
    """Model input in NHWC layout: ``[1, H, W, 3]`` float32, channels ``[R, G, B]``."""

    data: NDArray[np.float32]

    def __post_init__(self) -> None:
        _check_nhwc(tuple(int(dim) for dim in self.data.shape), stage="inference")
        if self.data.dtype != np.float32:
            object.__setattr__(self, "data", self.data.astype(np.float32))

    @classmethod
    def for_size(
        cls,
        data: NDArray[np.float32],
        height: int,
        width: int,
        stage: str = "preprocess",
    ) -> InputTensor:
        """Build a tensor and require its spatial size to be exactly ``height`` x ``width``.

        Shape errors are reported against ``stage``, the producer of ``data``.
        """
        shape = tuple(int(dim) for dim in data.shape)
        _check_nhwc(shape, stage=stage)
        if shape != (BATCH_SIZE, height, width, CHANNELS):
            raise ShapeMismatchError(expected=(BATCH_SIZE, height, width, CHANNELS), actual=shape, stage=stage)
        return cls(data)

    @property
    def shape(self) -> tuple[int, int, int, int]:
        batch, height, width, channels = (int(dim) for dim in self.data.shape)
        return batch, height, width, channels


@dataclass(frozen=True, eq=False)
class OutputTensor:
    """Per-class scores as a 1-D float32 vector of length C."""

    scores: NDArray[np.float32]

    def __post_init__(self) -> None:
        if self.scores.ndim != 1:
            raise InferenceError(f"Output tensor must be 1-D, got shape {list(self.scores.shape)}")

    @classmethod
    def from_model_output(cls, raw: NDArray[np.generic]) -> OutputTensor:
        """Accept a ``[1, C]`` or ``[C]`` model output and copy it into a fresh buffer."""
        array = np.asarray(raw)
        if array.ndim == 2 and array.shape[0] == BATCH_SIZE:
            array = array[0]
        if array.ndim != 1:
            raise InferenceError(f"Expected model output of shape [1, C] or [C], got {list(array.shape)}")
        return cls(np.array(array, dtype=np.float32, copy=True))

    def __len__(self) -> int:
        return int(self.scores.shape[0])
