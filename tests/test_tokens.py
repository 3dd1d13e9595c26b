"""
Unit tests for unit estimation.
"""

from tokentrim.core.tokens import UnitCounter, estimate_lines_units, estimate_units


class TestEstimateUnits:
    """Test the ceil(chars / 4) estimate."""

    def test_empty_text_is_zero(self):
        assert estimate_units("") == 0

    def test_rounds_up(self):
        assert estimate_units("a") == 1
        assert estimate_units("abcd") == 1
        assert estimate_units("abcde") == 2

    def test_lines_are_newline_joined(self):
        # "ab\ncd" is 5 characters
        assert estimate_lines_units(["ab", "cd"]) == 2
        assert estimate_lines_units([]) == 0


class TestUnitCounter:
    """Test incremental counting."""

    def test_chunking_does_not_change_total(self):
        text = "x" * 1001
        whole = UnitCounter()
        whole.add(text)

        pieces = UnitCounter()
        for i in range(0, len(text), 7):
            pieces.add(text[i:i + 7])

        assert whole.units == pieces.units == estimate_units(text)

    def test_units_never_decrease(self):
        counter = UnitCounter()
        previous = 0
        for chunk in ["a", "", "bcd", "efghij", ""]:
            counter.add(chunk)
            assert counter.units >= previous
            previous = counter.units
