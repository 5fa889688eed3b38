"""Classification pipeline: Preprocessor -> Inference Engine -> Postprocessor.

The pipeline is an explicit context object built once at startup. It owns the
loaded model handle and the label table, both read-only afterwards, and is
passed by reference to whoever serves requests.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from photolabel.errors import ClassificationError, LabelCountMismatch
from photolabel.ml.engine import OnnxInferenceEngine
from photolabel.ml.postprocessing import DEFAULT_TOP_K, load_labels, postprocess
from photolabel.ml.preprocessing import ImagePreprocessor

if TYPE_CHECKING:
    from photolabel.config import Settings
    from photolabel.ml.engine import InferenceEngine, ModelHandle
    from photolabel.ml.postprocessing import LabelTable, RankedResult

logger = logging.getLogger(__name__)


class ClassificationPipeline:
    """Classifies encoded images against one loaded model and label table."""

    def __init__(
        self,
        preprocessor: ImagePreprocessor,
        engine: InferenceEngine,
        handle: ModelHandle,
        labels: LabelTable,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        if top_k < 0:
            raise ValueError(f"top_k must be non-negative, got {top_k}")
        declared = handle.num_classes
        if declared is not None and declared != len(labels):
            raise LabelCountMismatch(expected=declared, actual=len(labels))

        self.preprocessor = preprocessor
        self.engine = engine
        self.handle = handle
        self.labels = tuple(labels)
        self.top_k = top_k

        model_hw = handle.input_shape[1:3] if len(handle.input_shape) == 4 else ()
        if any(isinstance(dim, int) for dim in model_hw) and tuple(model_hw) != preprocessor.expected_shape[1:3]:
            logger.warning(
                "Preprocessor produces %s but model %s declares input %s",
                list(preprocessor.expected_shape),
                handle.name,
                list(handle.input_shape),
            )

    @classmethod
    def from_settings(cls, settings: Settings, engine: OnnxInferenceEngine | None = None) -> ClassificationPipeline:
        """Load the model and label table named by ``settings``.

        Raises:
            ModelLoadError: If either asset is missing or corrupt.
            LabelCountMismatch: If the model's declared class count disagrees with the labels.
        """
        engine = engine or OnnxInferenceEngine(settings)
        handle = engine.load(engine.ensure_model())
        labels = load_labels(settings.labels_path)
        return cls(
            preprocessor=ImagePreprocessor.from_settings(settings),
            engine=engine,
            handle=handle,
            labels=labels,
            top_k=settings.top_k,
        )

    def classify_image(self, image_bytes: bytes, top_k: int | None = None) -> RankedResult:
        """Run one image through all three stages.

        Args:
            image_bytes: Encoded image (JPEG, PNG, ...).
            top_k: Number of predictions to return; defaults to the pipeline setting.

        Returns:
            The top-K predictions, highest confidence first.

        Raises:
            DecodeError, ShapeMismatchError, InferenceError, LabelCountMismatch:
                The request failed at the named stage; the pipeline stays usable.
        """
        k = self.top_k if top_k is None else top_k
        try:
            tensor = self.preprocessor.preprocess(image_bytes)
            output = self.engine.infer(self.handle, tensor)
            return postprocess(output, self.labels, k)
        except ClassificationError as exc:
            logger.warning("Classification failed at %s stage: %s", exc.stage, exc)
            raise

    def describe(self) -> dict[str, Any]:
        """Summarize the loaded model for the health and models endpoints."""
        return {
            "name": self.handle.name,
            "input_shape": list(self.handle.input_shape),
            "num_classes": len(self.labels),
            "top_k": self.top_k,
        }

    def close(self) -> None:
        """Unload the model. Later ``classify_image`` calls raise ``InferenceError``."""
        self.engine.unload(self.handle)
