from ocrpdf.utils.redact import REDACTION_TOKEN, redact_mapping, redact_text

GOOGLE_KEY = "AIzaSyA1b2C3d4E5f6G7h8I9j0KlMnOpQrStUv"


def test_redact_text_patterns():
    text = (
        f"url=https://host/v1beta/models/m:generateContent?key={GOOGLE_KEY}&alt=json "
        f"header x-goog-api-key: abc123 auth Bearer tok.en-1"
    )
    redacted = redact_text(text)
    assert GOOGLE_KEY not in redacted
    assert "abc123" not in redacted
    assert "tok.en-1" not in redacted
    assert "&alt=json" in redacted
    assert redacted.count(REDACTION_TOKEN) >= 3


def test_redact_text_scrubs_exact_secrets():
    redacted = redact_text("rejected key free-test-key", secrets=("free-test-key", None, ""))
    assert redacted == f"rejected key {REDACTION_TOKEN}"


def test_plain_text_is_untouched():
    assert redact_text("Batch job batches/123 still RUNNING") == "Batch job batches/123 still RUNNING"


def test_redact_mapping_recurses_and_masks_credential_keys():
    payload = {
        "api_key": "anything",
        "nested": {"X-Goog-Api-Key": "value", "detail": f"key={GOOGLE_KEY}"},
        "items": [f"token {GOOGLE_KEY}", 5],
        "count": 2,
    }
    redacted = redact_mapping(payload)
    assert redacted["api_key"] == REDACTION_TOKEN
    assert redacted["nested"]["X-Goog-Api-Key"] == REDACTION_TOKEN
    assert GOOGLE_KEY not in redacted["nested"]["detail"]
    assert redacted["items"][0] == f"token {REDACTION_TOKEN}"
    assert redacted["items"][1] == 5
    assert redacted["count"] == 2
