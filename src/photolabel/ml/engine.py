"""Inference engine: load an ONNX classifier once and run it per request.

The model is an opaque artifact consumed through a fixed numeric contract:
one ``[1, H, W, 3]`` float32 input and one ``[1, C]`` score output.

``InferenceSession.run`` is safe to call from several threads at once and the
weights are never written after load, so ``infer`` does not serialize calls.
Every call builds its own input feed and copies the output into a fresh
buffer. The engine owns the sessions it creates; a handle only names one, and
``unload`` drops the session so later ``infer`` calls on that handle fail.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np
from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from photolabel.errors import InferenceError, ModelLoadError, ShapeMismatchError
from photolabel.ml.tensors import InputTensor, OutputTensor

if TYPE_CHECKING:
    from photolabel.config import Settings

logger = logging.getLogger(__name__)

Dim = int | str | None


# ---------------------------------------------------------------------------
# Handle and protocol (protocol kept for test mocking)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelHandle:
    """Names a loaded model and records the input/output contract it declares."""

    name: str
    path: Path
    input_name: str
    input_shape: tuple[Dim, ...]
    output_name: str
    output_shape: tuple[Dim, ...]

    @property
    def num_classes(self) -> int | None:
        """Declared class count, or None when the last output dim is symbolic."""
        if not self.output_shape:
            return None
        last = self.output_shape[-1]
        return last if isinstance(last, int) else None


class InferenceEngine(Protocol):
    """Protocol for the numeric runtime wrapper."""

    def load(self, model_path: Path) -> ModelHandle:
        """Load a model file and return its handle."""
        ...

    def infer(self, handle: ModelHandle, tensor: InputTensor) -> OutputTensor:
        """Run one forward pass."""
        ...

    def unload(self, handle: ModelHandle) -> None:
        """Release resources held for a handle."""
        ...


def check_input_shape(declared: tuple[Dim, ...], actual: tuple[int, ...]) -> None:
    """Compare a tensor shape to a model's declared shape.

    Symbolic dimensions (strings or None) match any size; fixed ones must be equal.

    Raises:
        ShapeMismatchError: On rank or fixed-dimension disagreement.
    """
    if len(declared) != len(actual):
        raise ShapeMismatchError(expected=declared, actual=actual)
    for want, got in zip(declared, actual, strict=True):
        if isinstance(want, int) and want > 0 and want != got:
            raise ShapeMismatchError(expected=declared, actual=actual)


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxInferenceEngine:
    """Creates ONNX Runtime sessions and runs single-image classification."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._providers = self._build_providers()
        self._session_options = self._build_session_options()
        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}

    # -- Public API ---------------------------------------------------------

    def ensure_model(self) -> Path:
        """Return the local model path, downloading it from HuggingFace if configured."""
        settings = self._settings
        if settings.model_repo_id is None:
            return Path(settings.model_path)

        models_dir = Path(settings.models_dir)
        local = models_dir / settings.model_filename
        if local.is_file():
            return local

        models_dir.mkdir(parents=True, exist_ok=True)
        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=settings.model_repo_id,
                    filename=settings.model_filename,
                    local_dir=str(models_dir),
                )
            )
        except Exception as exc:
            raise ModelLoadError(
                f"Failed to download {settings.model_filename} from {settings.model_repo_id}: {exc}"
            ) from exc
        logger.info("Downloaded %s to %s", settings.model_filename, downloaded)
        return downloaded

    def load(self, model_path: Path) -> ModelHandle:
        """Create an InferenceSession for ``model_path``.

        Raises:
            ModelLoadError: If the file is missing or ONNX Runtime rejects it.
        """
        path = Path(model_path)
        if not path.is_file():
            raise ModelLoadError(f"Model file not found: {path}")

        try:
            session = InferenceSession(
                str(path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to load model {path}: {exc}") from exc

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if len(inputs) != 1 or len(outputs) < 1:
            raise ModelLoadError(
                f"Model {path} must have exactly one input and at least one output, "
                f"got {len(inputs)} inputs and {len(outputs)} outputs"
            )

        handle = ModelHandle(
            name=path.stem,
            path=path,
            input_name=inputs[0].name,
            input_shape=tuple(inputs[0].shape),
            output_name=outputs[0].name,
            output_shape=tuple(outputs[0].shape),
        )
        with self._lock:
            self._sessions[handle.name] = session
        logger.info(
            "Loaded model %s (input=%s %s, output=%s %s)",
            handle.name,
            handle.input_name,
            list(handle.input_shape),
            handle.output_name,
            list(handle.output_shape),
        )
        return handle

    def infer(self, handle: ModelHandle, tensor: InputTensor) -> OutputTensor:
        """Run one forward pass and return the score vector.

        Raises:
            ShapeMismatchError: If the tensor disagrees with the declared input shape.
            InferenceError: If the model was unloaded, ONNX Runtime fails, or the
                scores are not finite.
        """
        check_input_shape(handle.input_shape, tensor.shape)

        with self._lock:
            session = self._sessions.get(handle.name)
        if session is None:
            raise InferenceError(f"Model {handle.name} is not loaded")

        try:
            results = session.run([handle.output_name], {handle.input_name: tensor.data})
        except Exception as exc:
            raise InferenceError(f"Inference failed for model {handle.name}: {exc}") from exc

        if not results:
            raise InferenceError(f"Model {handle.name} returned no outputs")

        output = OutputTensor.from_model_output(results[0])
        if not np.all(np.isfinite(output.scores)):
            raise InferenceError(f"Model {handle.name} produced non-finite scores")
        return output

    def unload(self, handle: ModelHandle) -> None:
        """Drop the session behind ``handle``. Unloading twice is a no-op."""
        with self._lock:
            session = self._sessions.pop(handle.name, None)
        if session is not None:
            logger.info("Unloaded model %s", handle.name)

    def get_loaded_models(self) -> list[str]:
        """Return names of models with a live session."""
        with self._lock:
            return list(self._sessions.keys())

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
