"""Tests for shared text normalization helpers."""

from nummercheck.shared.text import (
    as_mapping,
    clean_caller_name,
    is_generic_label,
    normalize_status,
    pick_string,
    to_bool,
)


class TestNormalizeStatus:
    """Status text normalization."""

    def test_strips_byte_string_quoting(self) -> None:
        assert normalize_status("b'completed'") == "completed"

    def test_strips_plain_quotes(self) -> None:
        assert normalize_status('"in_progress"') == "in_progress"

    def test_decodes_bytes(self) -> None:
        assert normalize_status(b"Done") == "done"

    def test_lowercases_and_trims(self) -> None:
        assert normalize_status("  FAILED ") == "failed"

    def test_none_is_empty(self) -> None:
        assert normalize_status(None) == ""

    def test_leaves_words_starting_with_b(self) -> None:
        assert normalize_status("busy") == "busy"


class TestIsGenericLabel:
    """Placeholder name detection."""

    def test_sentinel_is_generic(self) -> None:
        assert is_generic_label("Onbekende beller")

    def test_punctuation_and_case_ignored(self) -> None:
        assert is_generic_label("N.V.T.")
        assert is_generic_label("  UNKNOWN   caller ")

    def test_real_name_is_not_generic(self) -> None:
        assert not is_generic_label("Jan de Vries")


class TestCleanCallerName:
    """Name cleanup."""

    def test_collapses_whitespace_and_trims_punctuation(self) -> None:
        assert clean_caller_name("  Jan   de Vries. ") == "Jan de Vries"

    def test_rejects_single_character(self) -> None:
        assert clean_caller_name("J") is None

    def test_rejects_non_string(self) -> None:
        assert clean_caller_name(42) is None


class TestSmallCoercions:
    """pick_string, as_mapping, to_bool."""

    def test_pick_string_skips_short_values(self) -> None:
        assert pick_string(None, " ", "x", " Studio Noord ") == "Studio Noord"

    def test_as_mapping_rejects_lists(self) -> None:
        assert as_mapping([1, 2]) == {}
        assert as_mapping({"a": 1}) == {"a": 1}

    def test_to_bool_accepts_text(self) -> None:
        assert to_bool("true") is True
        assert to_bool(" FALSE ") is False
        assert to_bool("yes") is None
        assert to_bool(False) is False
