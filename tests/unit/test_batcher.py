"""Unit tests for character-budget batching."""

import pytest

from concept_alignment.pipeline.batcher import batch_by_char_budget, total_chars


def _ids(batches):
    return [[el.id for el in batch] for batch in batches]


class TestBatchByCharBudget:
    """Tests for batch_by_char_budget."""

    def test_budget_spill_keeps_order(self, element_factory):
        elements = [element_factory("a", 30), element_factory("b", 30), element_factory("c", 30)]
        batches = batch_by_char_budget(elements, 50)
        assert _ids(batches) == [["a"], ["b"], ["c"]]

    def test_everything_fits_in_one_batch(self, element_factory):
        elements = [element_factory("a", 10), element_factory("b", 20)]
        batches = batch_by_char_budget(elements, 100)
        assert _ids(batches) == [["a", "b"]]

    def test_exact_fit_is_not_split(self, element_factory):
        elements = [element_factory("a", 25), element_factory("b", 25), element_factory("c", 25)]
        batches = batch_by_char_budget(elements, 50)
        assert _ids(batches) == [["a", "b"], ["c"]]

    def test_oversized_element_gets_its_own_batch(self, element_factory):
        elements = [element_factory("a", 10), element_factory("big", 500), element_factory("b", 10)]
        batches = batch_by_char_budget(elements, 50)
        assert _ids(batches) == [["a"], ["big"], ["b"]]

    def test_concatenation_reproduces_input(self, element_factory):
        sizes = [5, 40, 12, 80, 3, 3, 3, 49, 51, 1]
        elements = [element_factory(f"e{i}", size) for i, size in enumerate(sizes)]
        batches = batch_by_char_budget(elements, 50)

        flattened = [el.id for batch in batches for el in batch]
        assert flattened == [el.id for el in elements]

        for batch in batches:
            assert len(batch) == 1 or total_chars(batch) <= 50

    def test_empty_input(self):
        assert batch_by_char_budget([], 100) == []

    @pytest.mark.parametrize("budget", [0, -5])
    def test_invalid_budget(self, budget, element_factory):
        with pytest.raises(ValueError):
            batch_by_char_budget([element_factory("a")], budget)


class TestTotalChars:
    """Tests for total_chars."""

    def test_sums_content_lengths(self, element_factory):
        assert total_chars([element_factory("a", 3), element_factory("b", 7)]) == 10

    def test_empty_content_counts_zero(self, element_factory):
        assert total_chars([element_factory("a", 0)]) == 0
