"""Tests for tolerant JSON extraction."""

import pytest

from shared.errors import ParseError


class TestStripCodeFences:
    """Tests for fence removal."""

    def test_returns_fenced_content(self):
        from shared.parsing import strip_code_fences

        text = 'Here you go:\n```json\n{"score": 7}\n```\nThanks'
        assert strip_code_fences(text) == '{"score": 7}'

    def test_unfenced_text_is_trimmed(self):
        from shared.parsing import strip_code_fences

        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


class TestExtractJsonText:
    """Tests for cutting JSON out of prose."""

    def test_object_in_prose(self):
        from shared.parsing import extract_json_text

        text = 'Sure! {"is_valid_passport": true} Hope that helps.'
        assert extract_json_text(text) == '{"is_valid_passport": true}'

    def test_array_expected(self):
        from shared.parsing import extract_json_text

        text = 'Result: [{"score": 5}]'
        assert extract_json_text(text, expect="array") == '[{"score": 5}]'

    def test_unclosed_returns_tail(self):
        from shared.parsing import extract_json_text

        assert extract_json_text('prefix {"a": [1, 2') == '{"a": [1, 2'

    def test_no_opener(self):
        from shared.parsing import extract_json_text

        assert extract_json_text("no json here") is None


class TestRepairJson:
    """Tests for mechanical JSON repair."""

    def test_trailing_commas(self):
        from shared.parsing import repair_json

        assert repair_json('{"a": 1, "b": [1, 2,],}') == '{"a": 1, "b": [1, 2]}'

    def test_closes_brackets_in_nesting_order(self):
        from shared.parsing import repair_json

        assert repair_json('[{"a": [1') == '[{"a": [1]}]'

    def test_closes_unterminated_string(self):
        from shared.parsing import repair_json

        assert repair_json('{"reasoning": "cut off') == '{"reasoning": "cut off"}'

    def test_brackets_inside_strings_are_ignored(self):
        from shared.parsing import repair_json

        assert repair_json('{"text": "a [b] {c"') == '{"text": "a [b] {c"}'

    def test_dangling_comma_before_close(self):
        from shared.parsing import repair_json

        assert repair_json('[1, 2,') == "[1, 2]"


class TestParseJsonResponse:
    """Tests for the full parse path."""

    def test_fenced_array(self):
        from shared.parsing import parse_json_response

        text = '```json\n[{"requirement_id": "r1", "score": 8},]\n```'
        parsed = parse_json_response(text, expect="array")

        assert parsed == [{"requirement_id": "r1", "score": 8}]

    def test_truncated_object_is_repaired(self):
        from shared.parsing import parse_json_response

        parsed = parse_json_response('{"faces_match": true, "confidence": 0.9')
        assert parsed == {"faces_match": True, "confidence": 0.9}

    def test_empty_raises(self):
        from shared.parsing import parse_json_response

        with pytest.raises(ParseError):
            parse_json_response("   ")

    def test_wrong_shape_raises(self):
        from shared.parsing import parse_json_response

        with pytest.raises(ParseError) as exc_info:
            parse_json_response("just some words", expect="array")

        assert exc_info.value.raw_text == "just some words"

    def test_unrecoverable_raises(self):
        from shared.parsing import parse_json_response

        with pytest.raises(ParseError):
            parse_json_response('{"a": nope}')
