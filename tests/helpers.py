"""Test helpers: synthetic images, fake engines and a tiny real ONNX model."""

from __future__ import annotations

import io
from pathlib import Path
from types import SimpleNamespace
from typing import TYPE_CHECKING

import numpy as np
import onnx
from onnx import TensorProto, helper, numpy_helper
from PIL import Image

from photolabel.errors import InferenceError
from photolabel.ml.engine import ModelHandle, check_input_shape
from photolabel.ml.tensors import InputTensor, OutputTensor

if TYPE_CHECKING:
    from numpy.typing import NDArray

LABELS: tuple[str, ...] = ("cat", "dog", "bird", "fish")


def encode_image(
    size: tuple[int, int] = (32, 24),
    mode: str = "RGB",
    color: int | tuple[int, ...] = (255, 0, 0),
    fmt: str = "PNG",
) -> bytes:
    """Encode a solid-color image of ``size`` (width, height) in memory."""
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


def channel_mean_scores(tensor: InputTensor, num_classes: int = len(LABELS)) -> NDArray[np.float32]:
    """Deterministic stand-in for a classifier: per-channel means spread over classes."""
    means = tensor.data.mean(axis=(0, 1, 2))
    scores = np.zeros(num_classes, dtype=np.float32)
    for idx in range(num_classes):
        scores[idx] = means[idx % 3] / (idx + 1)
    return scores


class FakeEngine:
    """In-memory InferenceEngine that records calls."""

    def __init__(
        self,
        num_classes: int | None = len(LABELS),
        input_shape: tuple[int | str | None, ...] = ("N", 224, 224, 3),
        error: Exception | None = None,
    ) -> None:
        self.num_classes = num_classes
        self.input_shape = input_shape
        self.error = error
        self.infer_calls = 0
        self.unloaded = False
        self.loaded: set[str] = set()

    def load(self, model_path: Path) -> ModelHandle:
        self.loaded.add(Path(model_path).stem)
        return ModelHandle(
            name=Path(model_path).stem,
            path=Path(model_path),
            input_name="input",
            input_shape=self.input_shape,
            output_name="scores",
            output_shape=("N", self.num_classes),
        )

    def infer(self, handle: ModelHandle, tensor: InputTensor) -> OutputTensor:
        self.infer_calls += 1
        check_input_shape(handle.input_shape, tensor.shape)
        if handle.name not in self.loaded:
            raise InferenceError(f"Model {handle.name} is not loaded")
        if self.error is not None:
            raise self.error
        return OutputTensor(channel_mean_scores(tensor, self.num_classes or len(LABELS)))

    def unload(self, handle: ModelHandle) -> None:
        self.loaded.discard(handle.name)
        self.unloaded = True


def fake_session(
    input_shape: list[int | str | None],
    output_shape: list[int | str | None],
    outputs: list[NDArray[np.float32]] | None = None,
) -> SimpleNamespace:
    """Object shaped like an InferenceSession for patching in engine tests."""
    session = SimpleNamespace()
    session.get_inputs = lambda: [SimpleNamespace(name="input", shape=input_shape)]
    session.get_outputs = lambda: [SimpleNamespace(name="scores", shape=output_shape)]
    session.run = lambda names, feed: outputs if outputs is not None else [np.zeros((1, 4), dtype=np.float32)]
    return session


def build_mean_classifier(path: Path, height: int = 8, width: int = 8) -> Path:
    """Write a tiny ONNX model: mean over H and W, then a fixed 3x4 projection."""
    weights = np.array(
        [
            [1.0, 0.0, 0.5, 0.1],
            [0.0, 1.0, 0.5, 0.1],
            [0.0, 0.0, 0.0, 0.1],
        ],
        dtype=np.float32,
    )
    graph = helper.make_graph(
        nodes=[
            helper.make_node("ReduceMean", ["input"], ["pooled"], axes=[1, 2], keepdims=0),
            helper.make_node("MatMul", ["pooled", "weights"], ["scores"]),
        ],
        name="mean_classifier",
        inputs=[helper.make_tensor_value_info("input", TensorProto.FLOAT, [1, height, width, 3])],
        outputs=[helper.make_tensor_value_info("scores", TensorProto.FLOAT, [1, 4])],
        initializer=[numpy_helper.from_array(weights, name="weights")],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    onnx.save(model, str(path))
    return path
