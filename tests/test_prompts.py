from __future__ import annotations

from app.prompts import (
    MAX_SOURCE_CHARS,
    TRUNCATION_NOTICE,
    build_document_prompt,
    build_stream_prompt,
    prepare_source_text,
)


def test_short_text_is_unchanged():
    text = "x" * MAX_SOURCE_CHARS
    assert prepare_source_text(text) == text


def test_long_text_is_truncated_with_notice():
    text = "a" * MAX_SOURCE_CHARS + "OVERFLOW"
    assert prepare_source_text(text) == "a" * MAX_SOURCE_CHARS + TRUNCATION_NOTICE


def test_truncation_counts_characters_not_bytes():
    text = "文" * MAX_SOURCE_CHARS
    assert prepare_source_text(text) == text
    assert prepare_source_text(text + "章").startswith("文" * MAX_SOURCE_CHARS + "\n\n[Note")


def test_document_prompt_substitutes_all_fields(generation_request):
    prompt = build_document_prompt(generation_request)

    assert "Original article body." in prompt
    assert "write 2 high-quality articles" in prompt
    assert '"WeChat"' in prompt
    assert '"product launch"' in prompt
    assert '"friendly tone"' in prompt
    assert "relay, streaming" in prompt
    assert "used for: marketing" in prompt
    assert "Markdown" in prompt
    assert "{" not in prompt


def test_stream_prompt_asks_for_plain_text_with_length_parity(generation_request):
    prompt = build_stream_prompt(generation_request)

    assert "90-110% of the source length" in prompt
    assert "without any Markdown markup" in prompt
    assert "Original article body." in prompt


def test_braces_in_user_text_are_not_substituted(generation_fields):
    from app.schemas import GenerationRequest

    request = GenerationRequest(**{**generation_fields, "text": "keep {scope} and {other} literal"})
    prompt = build_document_prompt(request)

    assert "keep {scope} and {other} literal" in prompt
