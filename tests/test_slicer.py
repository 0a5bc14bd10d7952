"""Tests for entry slicing."""

import pytest

from pdx_translator.slicer import entry_size, slice_entries

from conftest import make_entry


def size_by_length(text: str) -> int:
    return len(text)


class TestSliceEntries:

    def test_empty(self):
        assert slice_entries([], 100) == []

    def test_all_in_one_slice(self):
        entries = [make_entry(f"k{i}", "x") for i in range(5)]
        slices = slice_entries(entries, 100, size_by_length, file_id="f.yml")
        assert len(slices) == 1
        assert slices[0].slice_id == "f.yml#0"
        assert len(slices[0]) == 5

    def test_budget_respected(self):
        # key "kN" + value "xxxx" = 6 units each
        entries = [make_entry(f"k{i}", "xxxx") for i in range(10)]
        slices = slice_entries(entries, 20, size_by_length)
        assert [len(s) for s in slices] == [3, 3, 3, 1]
        for s in slices:
            assert sum(entry_size(e, size_by_length) for e in s.entries) <= 20

    def test_exact_fit_included(self):
        entries = [make_entry(f"k{i}", "xxxx") for i in range(4)]
        slices = slice_entries(entries, 12, size_by_length)
        assert [len(s) for s in slices] == [2, 2]

    def test_oversized_entry_alone(self, caplog):
        entries = [
            make_entry("a", "x"),
            make_entry("big", "y" * 50),
            make_entry("b", "z"),
        ]
        slices = slice_entries(entries, 10, size_by_length, file_id="f.yml")
        assert [[e.key for e in s.entries] for s in slices] == [["a"], ["big"], ["b"]]
        assert "larger than the slice budget" in caplog.text

    def test_order_and_coverage(self):
        entries = [make_entry(f"key_{i}", "v" * (i % 7)) for i in range(40)]
        slices = slice_entries(entries, 15, size_by_length)
        assert [s.index for s in slices] == list(range(len(slices)))
        flattened = [e for s in slices for e in s.entries]
        assert flattened == entries

    def test_entry_size_counts_key_and_value(self):
        assert entry_size(make_entry("key", "value"), size_by_length) == 8

    def test_default_size_function(self):
        entries = [make_entry(f"k{i}", "word " * 20) for i in range(10)]
        slices = slice_entries(entries, 100)
        assert sum(len(s) for s in slices) == 10

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            slice_entries([make_entry("a")], 0)
