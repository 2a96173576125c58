"""Sensitive values never reach the logs."""

import logging

from fiesta.security.logging_filters import SensitiveFilter, redact


def test_redact_scrubs_tokens_and_passwords() -> None:
    line = 'X-Internal-Token: s3cret {"password": "hunter22"}'
    cleaned = redact(line)
    assert "s3cret" not in cleaned
    assert "hunter22" not in cleaned


def test_filter_rewrites_record_message() -> None:
    record = logging.LogRecord(
        "fiesta", logging.INFO, __file__, 1, "Authorization: Bearer abc.def", None, None
    )
    assert SensitiveFilter().filter(record) is True
    assert "abc.def" not in record.msg
