"""
Tests for mark scheme summary (manifest) parsing.

Tests cover:
- Block detection, including unterminated blocks and markdown
- label(maxMarks) parsing with nested sub-question labels
- Declared total, generic labels and non-positive marks
"""

import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from core.dto.grading import ManifestEntry
from core.manifest import find_manifest_block, read_manifest, render_entries


NARRATIVE = """1a Mark: 2/2 - Good.
2a Mark: 4/5 - Solid.

[MARK SCHEME SUMMARY]
Questions: 1a(2), 1b(3), 2a(5)
Total: 10
[END SUMMARY]"""


# ============================================================================
# Test read_manifest()
# ============================================================================


def test_read_manifest_basic():
    """Entries and declared total are parsed in order."""
    manifest = read_manifest(NARRATIVE)

    assert manifest is not None
    assert [entry.label for entry in manifest.entries] == ["1a", "1b", "2a"]
    assert [entry.max_marks for entry in manifest.entries] == [2, 3, 5]
    assert manifest.declared_total == 10
    print("✓ test_read_manifest_basic passed")


def test_no_manifest_returns_none():
    """A narrative without a summary block has no manifest."""
    assert read_manifest("1 Mark: 2/2 - Good.") is None
    assert find_manifest_block("nothing here") is None
    print("✓ test_no_manifest_returns_none passed")


def test_nested_sub_question_labels():
    """Labels with their own parentheses keep them."""
    narrative = """[MARK SCHEME SUMMARY]
Questions: 1(a)(2), 1(b)(ii)(3), 2(5 marks)
[END SUMMARY]"""
    manifest = read_manifest(narrative)

    assert [entry.label for entry in manifest.entries] == ["1(a)", "1(b)(ii)", "2"]
    assert [entry.max_marks for entry in manifest.entries] == [2, 3, 5]
    print("✓ test_nested_sub_question_labels passed")


def test_missing_total_uses_sum():
    """Without a Total line the declared total is the sum of entries."""
    narrative = "[MARK SCHEME SUMMARY]\nQuestions: 1(2), 2(3.5)\n[END SUMMARY]"
    manifest = read_manifest(narrative)

    assert manifest.declared_total == 5.5
    print("✓ test_missing_total_uses_sum passed")


def test_unterminated_block():
    """A block cut off before its end marker still parses."""
    narrative = "1 Mark: 1/1 - ok\n[MARK SCHEME SUMMARY]\nQuestions: 1(1), 2(4)\nTotal: 5"
    manifest = read_manifest(narrative)

    assert manifest is not None
    assert [entry.label for entry in manifest.entries] == ["1", "2"]
    assert manifest.declared_total == 5
    print("✓ test_unterminated_block passed")


def test_one_entry_per_line():
    """Bulleted entries on separate lines are accepted."""
    narrative = """[MARK SCHEME SUMMARY]
- 1a (2)
- 1b (3)
Total: 5
[END SUMMARY]"""
    manifest = read_manifest(narrative)

    assert [entry.label for entry in manifest.entries] == ["1a", "1b"]
    assert manifest.declared_total == 5
    print("✓ test_one_entry_per_line passed")


def test_generic_and_non_positive_entries_skipped():
    """Total/summary labels and zero-mark entries are not questions."""
    narrative = """[MARK SCHEME SUMMARY]
Questions: 1(2), Total(10), Summary(3), 2(0), 3(4)
[END SUMMARY]"""
    manifest = read_manifest(narrative)

    assert [entry.label for entry in manifest.entries] == ["1", "3"]
    print("✓ test_generic_and_non_positive_entries_skipped passed")


def test_duplicate_entries_keep_first():
    """A label listed twice is kept once."""
    narrative = "[MARK SCHEME SUMMARY]\nQuestions: 1(2), Question 1(4), 2(3)\n[END SUMMARY]"
    manifest = read_manifest(narrative)

    assert [entry.label for entry in manifest.entries] == ["1", "2"]
    assert manifest.entries[0].max_marks == 2
    print("✓ test_duplicate_entries_keep_first passed")


def test_empty_block_returns_none():
    """A block with no usable entries disables reconciliation."""
    narrative = "[MARK SCHEME SUMMARY]\nTotal: 10\n[END SUMMARY]"
    assert read_manifest(narrative) is None
    print("✓ test_empty_block_returns_none passed")


def test_markdown_around_block():
    """Bold markers around the block are ignored."""
    narrative = "**[MARK SCHEME SUMMARY]**\nQuestions: **1(2)**, 2(3)\n**[END SUMMARY]**"
    manifest = read_manifest(narrative)

    assert [entry.label for entry in manifest.entries] == ["1", "2"]
    print("✓ test_markdown_around_block passed")


# ============================================================================
# Test rendering
# ============================================================================


def test_render_entries():
    """Entries render as label(maxMarks) without trailing .0."""
    entries = [ManifestEntry("1b", 3.0), ManifestEntry("2(a)", 2.5)]
    assert render_entries(entries) == "1b(3), 2(a)(2.5)"
    print("✓ test_render_entries passed")


def run_all_tests():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("Running Manifest Tests")
    print("=" * 60 + "\n")

    test_read_manifest_basic()
    test_no_manifest_returns_none()
    test_nested_sub_question_labels()
    test_missing_total_uses_sum()
    test_unterminated_block()
    test_one_entry_per_line()
    test_generic_and_non_positive_entries_skipped()
    test_duplicate_entries_keep_first()
    test_empty_block_returns_none()
    test_markdown_around_block()
    test_render_entries()

    print("\n" + "=" * 60)
    print("All manifest tests passed!")
    print("=" * 60 + "\n")


if __name__ == "__main__":
    run_all_tests()
