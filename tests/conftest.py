"""Shared fixtures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.helpers import LABELS, build_mean_classifier, encode_image

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def labels_file(tmp_path: Path) -> Path:
    path = tmp_path / "labels.txt"
    path.write_text("\n".join(LABELS) + "\n", encoding="utf-8")
    return path


@pytest.fixture()
def onnx_model(tmp_path: Path) -> Path:
    return build_mean_classifier(tmp_path / "mean_classifier.onnx")


@pytest.fixture()
def red_png() -> bytes:
    return encode_image(color=(255, 0, 0))
