"""Turn a raw score vector into a ranked, human-readable label list."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import TYPE_CHECKING, overload

import numpy as np

from photolabel.errors import LabelCountMismatch, ModelLoadError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from photolabel.ml.tensors import OutputTensor

logger = logging.getLogger(__name__)

DEFAULT_TOP_K: int = 5
_TWO_PLACES = Decimal("0.01")

LabelTable = tuple[str, ...]


@dataclass(frozen=True)
class Prediction:
    """A single ranked label with its confidence as a percentage string."""

    label: str
    confidence: str
    score: float
    class_index: int


@dataclass(frozen=True)
class RankedResult:
    """Top-K predictions, highest score first."""

    predictions: tuple[Prediction, ...] = ()

    def __len__(self) -> int:
        return len(self.predictions)

    def __iter__(self) -> Iterator[Prediction]:
        return iter(self.predictions)

    @overload
    def __getitem__(self, index: int) -> Prediction: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Prediction, ...]: ...

    def __getitem__(self, index: int | slice) -> Prediction | tuple[Prediction, ...]:
        return self.predictions[index]

    def as_dicts(self) -> list[dict[str, str]]:
        return [{"label": p.label, "confidence": p.confidence} for p in self.predictions]


def load_labels(path: Path | str) -> LabelTable:
    """Read a newline-delimited UTF-8 label file.

    Trailing blank lines are dropped so a final newline does not add an empty
    label; blank lines in the middle are kept to preserve index alignment.

    Raises:
        ModelLoadError: If the file is missing, unreadable, or empty.
    """
    label_path = Path(path)
    try:
        text = label_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ModelLoadError(f"Failed to read label file {label_path}: {exc}") from exc

    labels = [line.rstrip("\r") for line in text.split("\n")]
    while labels and not labels[-1].strip():
        labels.pop()
    if not labels:
        raise ModelLoadError(f"Label file {label_path} is empty")

    logger.info("Loaded %d labels from %s", len(labels), label_path)
    return tuple(labels)


def format_confidence(score: float | np.floating) -> str:
    """Format a score as a percentage with two decimals, rounding half up.

    Rounding starts from the shortest decimal repr of ``score`` in its own
    precision, so a float32 ``0.00125`` formats as ``"0.13"`` just like the
    Python float ``0.00125``.
    """
    value = score if isinstance(score, np.floating) else float(score)
    percent = Decimal(np.format_float_positional(value, unique=True, trim="-")) * 100
    return str(percent.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def postprocess(output: OutputTensor, labels: LabelTable, top_k: int = DEFAULT_TOP_K) -> RankedResult:
    """Pair scores with labels, rank by score and keep the first ``top_k``.

    Ties keep ascending class-index order. ``top_k`` larger than the class
    count returns every class.

    Raises:
        LabelCountMismatch: If the score vector and label table differ in length.
        ValueError: If ``top_k`` is negative.
    """
    if top_k < 0:
        raise ValueError(f"top_k must be non-negative, got {top_k}")
    if len(output) != len(labels):
        raise LabelCountMismatch(expected=len(output), actual=len(labels))

    scores = output.scores
    order = np.argsort(-scores, kind="stable")[:top_k]
    predictions = tuple(
        Prediction(
            label=labels[idx],
            confidence=format_confidence(scores[idx]),
            score=float(scores[idx]),
            class_index=int(idx),
        )
        for idx in order
    )
    return RankedResult(predictions=predictions)
