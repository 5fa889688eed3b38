"""Tests for label loading, confidence formatting and top-K ranking."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from photolabel.errors import InferenceError, LabelCountMismatch, ModelLoadError
from photolabel.ml.postprocessing import (
    DEFAULT_TOP_K,
    RankedResult,
    format_confidence,
    load_labels,
    postprocess,
)
from photolabel.ml.tensors import OutputTensor


def _scores(*values: float) -> OutputTensor:
    return OutputTensor(np.array(values, dtype=np.float32))


class TestPostprocess:
    def test_label_score_alignment(self) -> None:
        result = postprocess(_scores(0.1, 0.9, 0.3), ("cat", "dog", "bird"), top_k=2)
        assert result.as_dicts() == [
            {"label": "dog", "confidence": "90.00"},
            {"label": "bird", "confidence": "30.00"},
        ]

    def test_sorted_non_increasing(self) -> None:
        rng = np.random.default_rng(7)
        scores = rng.random(50).astype(np.float32)
        labels = tuple(f"class_{i}" for i in range(50))

        result = postprocess(OutputTensor(scores), labels, top_k=50)

        values = [p.score for p in result]
        assert values == sorted(values, reverse=True)

    def test_ties_keep_lower_index_first(self) -> None:
        result = postprocess(_scores(0.2, 0.5, 0.2, 0.5, 0.2), ("a", "b", "c", "d", "e"), top_k=5)
        assert [p.class_index for p in result] == [1, 3, 0, 2, 4]
        assert [p.label for p in result] == ["b", "d", "a", "c", "e"]

    def test_sorts_by_number_not_formatted_string(self) -> None:
        # "9.00" > "10.00" lexicographically.
        result = postprocess(_scores(0.09, 0.10), ("small", "large"), top_k=2)
        assert [p.label for p in result] == ["large", "small"]

    def test_default_top_k_is_five(self) -> None:
        labels = tuple(str(i) for i in range(10))
        result = postprocess(OutputTensor(np.linspace(0, 1, 10, dtype=np.float32)), labels)
        assert DEFAULT_TOP_K == 5
        assert len(result) == 5
        assert result[0].label == "9"

    def test_top_k_larger_than_class_count_returns_all(self) -> None:
        result = postprocess(_scores(0.3, 0.1, 0.6), ("a", "b", "c"), top_k=100)
        assert [p.label for p in result] == ["c", "a", "b"]

    def test_top_k_zero_returns_empty(self) -> None:
        result = postprocess(_scores(0.3, 0.1), ("a", "b"), top_k=0)
        assert len(result) == 0
        assert result.as_dicts() == []

    def test_negative_top_k_rejected(self) -> None:
        with pytest.raises(ValueError, match="top_k"):
            postprocess(_scores(0.3), ("a",), top_k=-1)

    def test_label_count_mismatch(self) -> None:
        output = OutputTensor(np.zeros(1001, dtype=np.float32))
        labels = tuple(str(i) for i in range(999))

        with pytest.raises(LabelCountMismatch) as exc_info:
            postprocess(output, labels)

        assert exc_info.value.expected == 1001
        assert exc_info.value.actual == 999
        assert exc_info.value.stage == "postprocess"

    def test_ranked_result_is_sequence_like(self) -> None:
        result = postprocess(_scores(0.1, 0.2), ("a", "b"), top_k=2)
        assert isinstance(result, RankedResult)
        assert [p.label for p in result[:1]] == ["b"]


class TestFormatConfidence:
    @pytest.mark.parametrize(
        ("score", "expected"),
        [
            (0.9, "90.00"),
            (1.0, "100.00"),
            (0.0, "0.00"),
            (0.12345, "12.35"),
            (0.00005, "0.01"),
            (0.00004, "0.00"),
            (0.5, "50.00"),
        ],
    )
    def test_two_decimals_round_half_up(self, score: float, expected: str) -> None:
        assert format_confidence(score) == expected

    def test_float32_input(self) -> None:
        assert format_confidence(np.float32(0.3)) == "30.00"

    def test_float32_rounds_from_its_own_shortest_repr(self) -> None:
        assert format_confidence(np.float32(0.00125)) == "0.13"
        assert format_confidence(0.00125) == "0.13"

    def test_exact_halfway_rounds_up(self) -> None:
        assert format_confidence(0.03125) == "3.13"
        assert format_confidence(np.float32(0.03125)) == "3.13"

    def test_postprocess_uses_same_rule_for_float32_scores(self) -> None:
        output = OutputTensor(np.array([0.00125, 0.0], dtype=np.float32))
        result = postprocess(output, ("a", "b"), top_k=1)
        assert result[0].confidence == "0.13"

    def test_scores_above_one(self) -> None:
        assert format_confidence(12.5) == "1250.00"


class TestLoadLabels:
    def test_reads_one_label_per_line(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.txt"
        path.write_text("background\ntench\ngoldfish\n", encoding="utf-8")
        assert load_labels(path) == ("background", "tench", "goldfish")

    def test_no_trailing_newline(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.txt"
        path.write_text("a\nb", encoding="utf-8")
        assert load_labels(path) == ("a", "b")

    def test_crlf_line_endings(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.txt"
        path.write_bytes(b"a\r\nb\r\n")
        assert load_labels(path) == ("a", "b")

    def test_interior_blank_lines_kept(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.txt"
        path.write_text("a\n\nc\n\n\n", encoding="utf-8")
        assert load_labels(path) == ("a", "", "c")

    def test_utf8_labels(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.txt"
        path.write_text("café\nçà\n", encoding="utf-8")
        assert load_labels(path) == ("café", "çà")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ModelLoadError, match="Failed to read label file"):
            load_labels(tmp_path / "missing.txt")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.txt"
        path.write_text("\n\n", encoding="utf-8")
        with pytest.raises(ModelLoadError, match="empty"):
            load_labels(path)


class TestOutputTensor:
    def test_batch_dimension_squeezed(self) -> None:
        output = OutputTensor.from_model_output(np.array([[0.1, 0.2, 0.7]], dtype=np.float32))
        assert len(output) == 3

    def test_output_copied(self) -> None:
        raw = np.array([[0.1, 0.2]], dtype=np.float32)
        output = OutputTensor.from_model_output(raw)
        raw[0, 0] = 99.0
        assert output.scores[0] == np.float32(0.1)

    def test_multi_batch_rejected(self) -> None:
        with pytest.raises(InferenceError):
            OutputTensor.from_model_output(np.zeros((2, 3), dtype=np.float32))
