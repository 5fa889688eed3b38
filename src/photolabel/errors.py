"""Exception hierarchy for the classification pipeline.

Every error carries the pipeline ``stage`` it was raised from so callers can
render an informative message without inspecting the exception type.
"""

from __future__ import annotations


class ClassificationError(Exception):
    """Base class for all pipeline failures."""

    stage: str = "pipeline"


class DecodeError(ClassificationError):
    """The image bytes could not be decoded as a supported format."""

    stage = "preprocess"


class ModelLoadError(ClassificationError):
    """A startup asset (model or label file) is missing or corrupt."""

    stage = "load"


class ShapeMismatchError(ClassificationError):
    """A tensor shape disagrees with the shape a stage requires.

    Raised from ``inference`` when the model's declared input disagrees, and
    from ``preprocess`` when the preprocessor packs a tensor of the wrong size.
    """

    stage = "inference"

    def __init__(
        self,
        expected: tuple[int | str | None, ...],
        actual: tuple[int, ...],
        stage: str | None = None,
    ) -> None:
        if stage is not None:
            self.stage = stage
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(f"Input tensor shape mismatch: expected {list(self.expected)}, got {list(self.actual)}")


class InferenceError(ClassificationError):
    """The numeric runtime failed or produced unusable output."""

    stage = "inference"


class LabelCountMismatch(ClassificationError):  # noqa: N818
    """The label table length disagrees with the model output length."""

    stage = "postprocess"

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Label count mismatch: model outputs {expected} scores but label table has {actual} labels")
