"""Tests for the remediation instructions database."""

from a11y_mcp.remediation.instructions import (
    GENERIC_INSTRUCTIONS,
    get_instructions,
    is_valid_entry,
    known_criteria,
    load_instructions,
)


class TestInstructions:
    """Test lookup and validation."""

    def test_bundled_entries_are_valid(self):
        instructions = load_instructions()
        assert instructions
        assert all(is_valid_entry(entry) for entry in instructions.values())

    def test_exact_match(self):
        assert "alt" in get_instructions("1.1.1")["prompt"]

    def test_keyword_fallback(self):
        assert get_instructions("image-alt-missing") == get_instructions("missing-alt")

    def test_generic_fallback(self):
        assert get_instructions("something-else") == GENERIC_INSTRUCTIONS

    def test_known_criteria_only_numbers(self):
        criteria = known_criteria()
        assert "1.1.1" in criteria
        assert "missing-alt" not in criteria

    def test_invalid_entries_skipped(self, tmp_path):
        f = tmp_path / "instructions.yaml"
        f.write_text(
            '"1.1.1":\n  prompt: Add alt text\n  guidelines:\n    - Be concise\n'
            '"2.4.4":\n  prompt: ""\n  guidelines: []\n'
        )
        instructions = load_instructions(f)
        assert list(instructions) == ["1.1.1"]
