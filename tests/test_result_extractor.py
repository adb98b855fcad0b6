import pytest

from ocrpdf.errors import ContentRejected, ContentUnreadable, RemoteJobFailed
from ocrpdf.models.job import TokenUsage
from ocrpdf.services.result_extractor import ResultExtractor, clean_text
from tests.stubs.gemini_stub import candidate_body, recitation_body

extractor = ResultExtractor()


def _inlined(inner):
    return {"inlinedResponses": {"inlinedResponses": [inner]}}


@pytest.mark.parametrize(
    "body, pattern, expected",
    [
        (
            {"metadata": {"output": _inlined({"response": candidate_body("from output")})}},
            "batch_output_first_part",
            "from output",
        ),
        (
            {"response": _inlined({"response": candidate_body("from response")})},
            "batch_response_parts",
            "from response",
        ),
        (candidate_body("from candidates"), "candidate_parts", "from candidates"),
        ({"content": {"parts": [{"text": "from content"}]}}, "content_parts", "from content"),
        ({"parts": [{"text": "bare parts"}]}, "parts", "bare parts"),
        ({"text": "just text"}, "text", "just text"),
    ],
)
def test_each_layout_is_recognised(body, pattern, expected):
    result = extractor.extract(body)
    assert result.text == expected
    assert result.pattern == pattern


def test_earlier_pattern_wins():
    body = candidate_body("lower priority")
    body["metadata"] = {"output": _inlined({"response": candidate_body("higher priority")})}
    assert extractor.extract(body).text == "higher priority"


def test_empty_earlier_pattern_falls_through():
    body = {"candidates": [{"content": {"parts": [{"text": ""}]}}], "text": "fallback"}
    result = extractor.extract(body)
    assert result.text == "fallback"
    assert result.pattern == "text"


def test_multiple_parts_are_joined_by_newline():
    body = {"candidates": [{"content": {"parts": [{"text": "page one"}, {"text": "page two"}]}}]}
    assert extractor.extract(body).text == "page one\npage two"


def test_markdown_fences_are_removed():
    raw = "```markdown\n# Title\n\nBody line\n```"
    assert clean_text(raw) == "# Title\n\nBody line"
    assert extractor.extract(candidate_body(raw)).text == "# Title\n\nBody line"


def test_leading_blank_line_is_removed():
    assert clean_text("\nFirst line\nSecond") == "First line\nSecond"


def test_usage_reported_in_full_is_kept():
    usage = {
        "promptTokenCount": 100,
        "candidatesTokenCount": 40,
        "thoughtsTokenCount": 10,
        "totalTokenCount": 150,
    }
    result = extractor.extract(candidate_body("x", usage))
    assert result.usage == TokenUsage(input=100, output=40, reasoning=10, total=150)
    assert result.usage.as_csv() == "100,40,10,150"


@pytest.mark.parametrize("output_field", [None, 0])
def test_missing_output_is_derived_from_total(output_field):
    usage = {"promptTokenCount": 100, "thoughtsTokenCount": 10, "totalTokenCount": 150}
    if output_field is not None:
        usage["candidatesTokenCount"] = output_field
    result = extractor.extract(candidate_body("x", usage))
    assert result.usage.output == 40


def test_derived_output_never_negative():
    usage = TokenUsage.from_counts(input=100, output=None, reasoning=80, total=150)
    assert usage.output == 0


def test_batch_response_usage_has_priority():
    body = {
        "response": _inlined(
            {"response": candidate_body("x", {"promptTokenCount": 7, "totalTokenCount": 9})}
        ),
        "usageMetadata": {"promptTokenCount": 1, "totalTokenCount": 1},
    }
    usage = extractor.extract(body).usage
    assert usage.input == 7
    assert usage.output == 2


def test_no_usage_means_zeros():
    assert extractor.extract({"text": "hi"}).usage == TokenUsage()


def test_inline_batch_error_is_job_failure():
    body = {"response": _inlined({"error": {"code": 3, "message": "invalid file"}})}
    with pytest.raises(RemoteJobFailed) as excinfo:
        extractor.extract(body)
    assert "invalid file" in excinfo.value.message


def test_recitation_without_text_is_rejection():
    with pytest.raises(ContentRejected):
        extractor.extract(recitation_body())


def test_no_text_anywhere_is_unreadable():
    with pytest.raises(ContentUnreadable):
        extractor.extract({"candidates": [{"content": {"parts": []}, "finishReason": "STOP"}]})


def test_negative_token_counts_are_rejected():
    with pytest.raises(ValueError):
        TokenUsage(input=-1)
