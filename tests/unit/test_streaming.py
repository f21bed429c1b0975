import json

import pytest

from decktutor.streaming import ToolCall, ToolCallAccumulator, ToolCallFragment


# ---------------------------------------------------------------------------
# ToolCallAccumulator
# ---------------------------------------------------------------------------

class TestToolCallAccumulator:
    def test_single_call_across_fragments(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=0, call_id="call_1", name="semanticSearchAmongDecks", arguments_delta='{"qu'))
        acc.feed(ToolCallFragment(index=0, arguments_delta='ery": "bio'))
        acc.feed(ToolCallFragment(index=0, arguments_delta='logy"}'))

        calls = acc.finalize()
        assert len(calls) == 1
        assert calls[0].id == "call_1"
        assert calls[0].name == "semanticSearchAmongDecks"
        assert calls[0].parsed_arguments() == {"query": "biology"}

    def test_interleaved_indices_are_independent(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=1, call_id="b", name="cards", arguments_delta='{"query"'))
        acc.feed(ToolCallFragment(index=0, call_id="a", name="decks", arguments_delta='{"query"'))
        acc.feed(ToolCallFragment(index=1, arguments_delta=': "cells"}'))
        acc.feed(ToolCallFragment(index=0, arguments_delta=': "plants"}'))

        calls = acc.finalize()
        assert [c.id for c in calls] == ["a", "b"]
        assert calls[0].arguments == '{"query": "plants"}'
        assert calls[1].arguments == '{"query": "cells"}'

    def test_arguments_are_concatenated_in_arrival_order(self):
        chunks = {0: ["{", '"a"', ": 1", "}"], 1: ["{", '"b": ', "2}"], 2: ["{}"]}
        order = [(0, 0), (1, 0), (2, 0), (1, 1), (0, 1), (0, 2), (1, 2), (0, 3)]
        acc = ToolCallAccumulator()
        for index, n in order:
            acc.feed(ToolCallFragment(index=index, arguments_delta=chunks[index][n]))

        assert [c.arguments for c in acc.finalize()] == [
            "".join(chunks[0]), "".join(chunks[1]), "".join(chunks[2]),
        ]

    def test_id_and_name_overwritten_only_when_present(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=0, call_id="call_1", name="first"))
        acc.feed(ToolCallFragment(index=0, call_id=None, name="", arguments_delta="{}"))
        call = acc.finalize()[0]
        assert call.id == "call_1"
        assert call.name == "first"

        acc.feed(ToolCallFragment(index=0, call_id="call_2", name="second"))
        call = acc.finalize()[0]
        assert call.id == "call_2"
        assert call.name == "second"
        assert call.arguments == "{}"

    def test_fragment_without_id_creates_entry(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=3, arguments_delta='{"x"'))
        acc.feed(ToolCallFragment(index=3, call_id="late", name="tool", arguments_delta=": 1}"))
        call = acc.finalize()[0]
        assert call.id == "late"
        assert call.arguments == '{"x": 1}'

    def test_reset_discards_pending(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=0, call_id="c", name="n"))
        assert len(acc) == 1
        acc.reset()
        assert len(acc) == 0
        assert acc.finalize() == []


# ---------------------------------------------------------------------------
# ToolCall.parsed_arguments
# ---------------------------------------------------------------------------

class TestParsedArguments:
    def test_empty_text_is_empty_object(self):
        assert ToolCall(name="t", arguments="  ").parsed_arguments() == {}

    def test_invalid_json_raises(self):
        with pytest.raises(json.JSONDecodeError):
            ToolCall(name="t", arguments='{"query": ').parsed_arguments()

    def test_non_object_raises_type_error(self):
        with pytest.raises(TypeError, match="JSON object"):
            ToolCall(name="t", arguments="[1, 2]").parsed_arguments()
