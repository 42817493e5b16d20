"""Row transformer tests."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from batchmigrate.errors import RecordSkipped
from batchmigrate.models.record import SourceRecord, WriteOperation
from batchmigrate.services.transformer import (
    DeleteKeyTransformer,
    EmailIndexTransformer,
    count_attachments,
    extract_address,
    extract_display_name,
    extract_preview,
    normalize_importance,
    preview_rows,
    skip_reason,
)

from .conftest import NOW, make_email


def source(row):
    return SourceRecord(id=str(row.get("id")), table="emails", data=row)


def test_extract_preview_strips_html_and_truncates():
    html = "<div><p>Hello   <b>there</b></p>\n<p>" + "x" * 300 + "</p></div>"

    preview = extract_preview(html, 20)

    assert preview.startswith("Hello there x")
    assert preview.endswith("...")
    assert len(preview) == 23
    assert extract_preview(None) == ""
    assert extract_preview("short") == "short"


def test_normalize_importance():
    assert normalize_importance("URGENT") == "high"
    assert normalize_importance("High") == "high"
    assert normalize_importance("low") == "low"
    assert normalize_importance("whatever") == "normal"
    assert normalize_importance(None) == "normal"


def test_address_helpers():
    assert extract_address('"Jane Doe" <jane@x.com>') == "jane@x.com"
    assert extract_address("plain@x.com") == "plain@x.com"
    assert extract_display_name('"Jane Doe" <jane@x.com>') == "Jane Doe"
    assert extract_display_name("plain@x.com") is None
    assert count_attachments([{"a": 1}, {"b": 2}]) == 2
    assert count_attachments("not a list") == 0


def test_index_row_from_email():
    transformer = EmailIndexTransformer(as_of=NOW)
    row = make_email(
        1,
        html_content="<p>Hi <i>team</i></p>",
        text_content=None,
        priority="Urgent",
        attachments=[{"filename": "a.pdf"}],
    )

    records = transformer.transform(source(row))
    index = records[0]

    assert index.table == "email_index"
    assert index.natural_key == "<msg-00001@mail.example.com>"
    assert index.data["sender_email"] == "sender1@example.com"
    assert index.data["sender_name"] == "Sender 1"
    assert index.data["preview_text"] == "Hi team"
    assert index.data["importance"] == "high"
    assert index.data["has_attachments"] is True
    assert index.data["attachment_count"] == 1
    assert index.data["email_type"] == "received"
    assert index.data["folder_name"] == "INBOX"
    assert index.source_id == "email-00001"


def test_unimportant_read_old_email_has_no_cache_record():
    transformer = EmailIndexTransformer(as_of=NOW)
    records = transformer.transform(source(make_email(1)))
    assert [r.table for r in records] == ["email_index"]


def test_important_email_gets_best_effort_cache_record():
    transformer = EmailIndexTransformer(as_of=NOW)
    row = make_email(2, is_read=False, raw_content="RAW")

    records = transformer.transform(source(row))

    assert [r.table for r in records] == ["email_index", "email_content_cache"]
    cache = records[1]
    assert cache.best_effort
    assert cache.data["plain_content"] == "Body of message 2"
    assert cache.data["raw_content"] == "RAW"


def test_recent_email_is_important():
    transformer = EmailIndexTransformer(as_of=NOW)
    row = make_email(3, received_date=(NOW - timedelta(days=2)).isoformat())
    assert transformer.is_important(transformer.parse(source(row)))


def test_cache_disabled():
    transformer = EmailIndexTransformer(as_of=NOW, cache_content=False)
    records = transformer.transform(source(make_email(2, is_read=False)))
    assert [r.table for r in records] == ["email_index"]
    assert transformer.destination_tables() == {"email_index": "message_id"}


def test_missing_message_id_fails_validation():
    transformer = EmailIndexTransformer(as_of=NOW)

    with pytest.raises(ValidationError) as excinfo:
        transformer.transform(source(make_email(4, message_id=None)))

    assert "message_id" in skip_reason(excinfo.value)


def test_lenient_columns_do_not_fail_rows():
    transformer = EmailIndexTransformer(as_of=NOW)
    row = make_email(5, received_date="not a date", is_read="yes", sentiment_score="n/a", subject=None)

    index = transformer.transform(source(row))[0].data

    assert index["is_read"] is True
    assert index["sentiment_score"] is None
    assert index["subject"] == ""


def test_transform_is_deterministic():
    transformer = EmailIndexTransformer(as_of=NOW)
    row = make_email(6, is_read=False)
    first = [r.to_dict() for r in transformer.transform(source(row))]
    second = [r.to_dict() for r in transformer.transform(source(row))]
    assert first == second


def test_delete_transformer():
    transformer = DeleteKeyTransformer("emails", "id")

    records = transformer.transform(source({"id": "e-1", "subject": "x"}))

    assert records[0].operation == WriteOperation.DELETE
    assert records[0].data == {"id": "e-1"}
    with pytest.raises(RecordSkipped):
        transformer.transform(source({"id": None}))


def test_preview_rows_reports_skips():
    transformer = EmailIndexTransformer(as_of=NOW)

    output = preview_rows(transformer, [make_email(1), make_email(2, message_id="")])

    assert output[0]["records"][0]["table"] == "email_index"
    assert "message_id" in output[1]["skipped"]
