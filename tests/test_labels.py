"""Tests for the label set and the medicine catalog."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from rxreader.ml.labels import DEFAULT_MEDICINES, LabelSet, MedicineCatalog

if TYPE_CHECKING:
    from pathlib import Path


class TestLabelSet:
    def test_default_has_twenty_medicines(self) -> None:
        labels = LabelSet.default()
        assert len(labels) == 20
        assert labels[0] == "Azathioprine"
        assert labels[10] == "Ibuprofen"
        assert labels[19] == "Tramadol"

    def test_out_of_range_index_raises(self) -> None:
        labels = LabelSet.default()
        with pytest.raises(IndexError):
            labels.name(20)

    def test_negative_index_is_not_wrapped(self) -> None:
        labels = LabelSet.default()
        with pytest.raises(IndexError):
            labels[-1]

    def test_duplicates_rejected(self) -> None:
        with pytest.raises(ValueError, match="unique"):
            LabelSet(["Quinine", "Quinine"])

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValueError):
            LabelSet([])

    def test_index_lookup(self) -> None:
        labels = LabelSet.default()
        assert labels.index("Lorazepam") == 12
        assert "Lorazepam" in labels

    def test_names_are_immutable(self) -> None:
        labels = LabelSet(["A", "B"])
        assert isinstance(labels.names, tuple)


class TestLabelFiles:
    def test_json_list(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.json"
        path.write_text(json.dumps(["Quinine", "Tramadol"]))
        assert LabelSet.from_file(path).names == ("Quinine", "Tramadol")

    def test_json_index_map(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.json"
        path.write_text(json.dumps({"1": "Tramadol", "0": "Quinine"}))
        assert LabelSet.from_file(path).names == ("Quinine", "Tramadol")

    def test_json_index_map_with_gap_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.json"
        path.write_text(json.dumps({"0": "Quinine", "2": "Tramadol"}))
        with pytest.raises(ValueError, match="without gaps"):
            LabelSet.from_file(path)

    def test_plain_text(self, tmp_path: Path) -> None:
        path = tmp_path / "labels.txt"
        path.write_text("Quinine\n\nTramadol\n")
        assert LabelSet.from_file(path).names == ("Quinine", "Tramadol")


class TestMedicineCatalog:
    def test_default_covers_every_default_label(self) -> None:
        catalog = MedicineCatalog.default()
        for name in DEFAULT_MEDICINES:
            info = catalog.get(name)
            assert info is not None
            assert info.indication

    def test_unknown_and_none_return_none(self) -> None:
        catalog = MedicineCatalog.default()
        assert catalog.get("Aspirin") is None
        assert catalog.get(None) is None

    def test_entries_are_read_only(self) -> None:
        catalog = MedicineCatalog.default()
        with pytest.raises(TypeError):
            catalog.entries["Aspirin"] = catalog.entries["Quinine"]  # type: ignore[index]
