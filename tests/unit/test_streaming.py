import json

import pytest

from turnstream.streaming import ArgumentAccumulator, ArgumentParseError, parse_arguments


class TestArgumentAccumulator:
    def test_partial_object_after_each_delta(self):
        acc = ArgumentAccumulator()
        assert acc.feed("fc_1", '{"city":').parsed == {}
        pending = acc.feed("fc_1", ' "NY')
        assert pending.raw == '{"city": "NY'
        assert pending.parsed == {"city": "NY"}

    def test_final_lenient_parse_equals_strict_parse(self):
        document = '{"city": "NYC", "units": "metric", "days": [1, 2, 3], "detail": {"hourly": false}}'
        for size in (1, 2, 3, 7, 16):
            acc = ArgumentAccumulator()
            for start in range(0, len(document), size):
                pending = acc.feed("fc_1", document[start:start + size])
            assert pending.parsed == json.loads(document)

    def test_calls_are_tracked_independently(self):
        acc = ArgumentAccumulator()
        acc.feed("fc_1", '{"a": 1')
        acc.feed("fc_2", '{"b": 2')
        assert acc.raw("fc_1") == '{"a": 1'
        assert acc.raw("fc_2") == '{"b": 2'

    def test_malformed_text_keeps_last_good_parse(self):
        acc = ArgumentAccumulator()
        acc.feed("fc_1", '{"a": 1,')
        pending = acc.feed("fc_1", "}}")
        assert pending.raw == '{"a": 1,}}'
        assert pending.parsed == {"a": 1}

    def test_empty_delta_is_noop(self):
        acc = ArgumentAccumulator()
        acc.feed("fc_1", '{"a"')
        assert acc.feed("fc_1", "").raw == '{"a"'
        assert acc.feed("fc_1", None).raw == '{"a"'

    def test_finalize_prefers_authoritative_text(self):
        acc = ArgumentAccumulator()
        acc.feed("fc_1", '{"city": "NY')
        arguments, parsed = acc.finalize("fc_1", '{"city": "NYC"}')
        assert arguments == '{"city": "NYC"}'
        assert parsed == {"city": "NYC"}
        assert "fc_1" not in acc

    def test_finalize_falls_back_to_accumulated_text(self):
        acc = ArgumentAccumulator()
        acc.feed("fc_1", '{"city":')
        acc.feed("fc_1", ' "NYC"}')
        assert acc.finalize("fc_1") == ('{"city": "NYC"}', {"city": "NYC"})

    def test_finalize_raises_on_invalid_text(self):
        acc = ArgumentAccumulator()
        acc.feed("fc_1", '{"city": "NY')
        with pytest.raises(ArgumentParseError) as exc:
            acc.finalize("fc_1")
        assert exc.value.item_id == "fc_1"
        assert exc.value.arguments == '{"city": "NY'

    def test_clear(self):
        acc = ArgumentAccumulator()
        acc.feed("fc_1", "{")
        acc.clear()
        assert "fc_1" not in acc
        assert acc.raw("fc_1") == ""


class TestParseArguments:
    def test_empty_string_means_no_arguments(self):
        assert parse_arguments("fc_1", "") == {}
        assert parse_arguments("fc_1", "  ") == {}

    def test_rejects_non_object(self):
        with pytest.raises(ArgumentParseError, match="expected an object"):
            parse_arguments("fc_1", "[1, 2]")

    def test_rejects_invalid_json(self):
        with pytest.raises(ArgumentParseError):
            parse_arguments("fc_1", '{"a": }')
