from __future__ import annotations

from orchestrator.text_normalizer import extract_text


class _Weird:
    def __str__(self) -> str:
        raise RuntimeError("no string form")


def test_plain_values():
    assert extract_text("scene") == "scene"
    assert extract_text(None) == ""
    assert extract_text(b"bytes text") == "bytes text"
    assert extract_text(42) == "42"


def test_openai_chat_shape():
    payload = {"choices": [{"index": 0, "message": {"role": "assistant", "content": "Once upon a time"}}]}
    assert extract_text(payload) == "Once upon a time"


def test_text_keys_win_over_lists():
    payload = {"choices": [{"text": "second"}], "output": "first"}
    assert extract_text(payload) == "first"


def test_blank_text_key_falls_through():
    payload = {"text": "   ", "content": "real"}
    assert extract_text(payload) == "real"


def test_sequence_uses_first_element():
    assert extract_text([{"content": "a"}, {"content": "b"}]) == "a"
    assert extract_text([]) == ""


def test_candidates_shape():
    payload = {"candidates": [{"content": {"parts": [{"text": "gemini style"}]}}]}
    assert extract_text(payload) == "gemini style"


def test_unknown_mapping_falls_back_to_str():
    assert extract_text({"foo": 1}) == "{'foo': 1}"


def test_never_raises():
    assert extract_text(_Weird()) == ""


def test_depth_is_bounded():
    value: object = "deep"
    for _ in range(20):
        value = {"data": value}
    result = extract_text(value)
    assert isinstance(result, str)
