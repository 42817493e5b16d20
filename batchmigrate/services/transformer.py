"""Row transformers: map a source row to destination records."""

import re
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from ..errors import RecordSkipped
from ..models.email import EmailRow, EmailIndexRow, EmailContentCacheRow
from ..models.record import DestinationRecord, SourceRecord, WriteOperation

logger = logging.getLogger(__name__)

TAG_RE = re.compile(r"<[^>]*>")
WHITESPACE_RE = re.compile(r"\s+")
ANGLE_ADDRESS_RE = re.compile(r"<(.+?)>")
DISPLAY_NAME_RE = re.compile(r"^(.+?)\s*<")


def extract_preview(content: Optional[str], length: int = 200) -> str:
    """Strip HTML tags and keep the first ``length`` characters."""
    if not content:
        return ""
    text = WHITESPACE_RE.sub(" ", TAG_RE.sub("", content)).strip()
    return text[:length] + "..." if len(text) > length else text


def normalize_importance(priority: Optional[str]) -> str:
    """Collapse provider priority labels to high / normal / low."""
    if not priority:
        return "normal"
    p = priority.lower()
    if "high" in p or "urgent" in p:
        return "high"
    if "low" in p:
        return "low"
    return "normal"


def extract_address(value: Optional[str]) -> Optional[str]:
    """``"Jane <jane@x.com>"`` -> ``"jane@x.com"``."""
    if not value:
        return None
    match = ANGLE_ADDRESS_RE.search(value)
    return match.group(1).strip() if match else value.strip()


def extract_display_name(value: Optional[str]) -> Optional[str]:
    """``"Jane <jane@x.com>"`` -> ``"Jane"``."""
    if not value:
        return None
    match = DISPLAY_NAME_RE.match(value)
    if not match:
        return None
    name = match.group(1).strip().strip('"').strip()
    return name or None


def count_attachments(attachments: Any) -> int:
    if not attachments:
        return 0
    if isinstance(attachments, (list, tuple, dict)):
        return len(attachments)
    return 0


class RowTransformer(ABC):
    """
    Base class for row transformers.

    ``transform`` must be pure: no I/O, same output for the same input.
    Rows are validated against ``source_model`` first; a row that fails
    validation, or for which ``build`` raises RecordSkipped, is skipped by
    the driver rather than counted as an error.
    """

    source_model: Optional[Type[BaseModel]] = None

    def parse(self, record: SourceRecord) -> Any:
        """Validate the raw row. Raises pydantic.ValidationError."""
        if self.source_model is None:
            return record.data
        return self.source_model.model_validate(record.data)

    @abstractmethod
    def build(self, row: Any, record: SourceRecord) -> List[DestinationRecord]:
        """Produce destination records from a validated row."""
        pass

    @abstractmethod
    def destination_tables(self) -> Dict[str, str]:
        """Destination table -> natural key column."""
        pass

    def transform(self, record: SourceRecord) -> List[DestinationRecord]:
        return self.build(self.parse(record), record)

    @property
    def primary_table(self) -> str:
        """The table verification recounts."""
        return next(iter(self.destination_tables()))


class EmailIndexTransformer(RowTransformer):
    """
    Splits a legacy ``emails`` row into lightweight index metadata and,
    for important messages, a best-effort content cache record.
    """

    source_model = EmailRow

    def __init__(
        self,
        as_of: Optional[datetime] = None,
        index_table: str = "email_index",
        cache_table: str = "email_content_cache",
        cache_content: bool = True,
        recent_days: int = 7,
        preview_length: int = 200
    ):
        """
        Initialize the transformer.

        Args:
            as_of: Reference time for "recent" checks (fixed per run)
            index_table: Destination for metadata rows
            cache_table: Destination for content rows
            cache_content: Whether to emit content cache records at all
            recent_days: Messages received within this window are cached
            preview_length: Characters kept in ``preview_text``
        """
        self.as_of = as_of or datetime.now(timezone.utc)
        if self.as_of.tzinfo is None:
            self.as_of = self.as_of.replace(tzinfo=timezone.utc)
        self.index_table = index_table
        self.cache_table = cache_table
        self.cache_content = cache_content
        self.recent_days = recent_days
        self.preview_length = preview_length

    def destination_tables(self) -> Dict[str, str]:
        tables = {self.index_table: "message_id"}
        if self.cache_content:
            tables[self.cache_table] = "message_id"
        return tables

    def build(self, row: EmailRow, record: SourceRecord) -> List[DestinationRecord]:
        index = self.build_index_row(row)
        records = [DestinationRecord(
            table=self.index_table,
            key="message_id",
            data=index.model_dump(mode="json"),
            source_id=record.id,
        )]

        if self.cache_content and self.is_important(row) and self._has_content(row):
            cache = EmailContentCacheRow(
                message_id=row.message_id,
                raw_content=row.raw_content,
                html_content=row.html_content,
                plain_content=row.text_content or row.plain_content,
                attachments=row.attachments,
                cached_at=self.as_of,
            )
            records.append(DestinationRecord(
                table=self.cache_table,
                key="message_id",
                data=cache.model_dump(mode="json"),
                source_id=record.id,
                best_effort=True,
            ))

        return records

    def build_index_row(self, row: EmailRow) -> EmailIndexRow:
        sender = row.from_address or row.sender
        attachment_count = count_attachments(row.attachments)

        if row.email_type:
            email_type = row.email_type
        else:
            email_type = "sent" if row.sent_date else "received"

        return EmailIndexRow(
            id=row.id,
            organization_id=row.organization_id,
            user_id=row.user_id,
            email_account_id=row.email_account_id,
            message_id=row.message_id,
            thread_id=row.thread_id,
            folder_name=row.folder or "INBOX",
            sender_email=extract_address(sender) or "",
            sender_name=row.from_name or extract_display_name(sender),
            recipient_email=extract_address(row.to_address or row.recipient),
            subject=row.subject,
            preview_text=extract_preview(
                row.text_content or row.html_content or row.plain_content,
                self.preview_length,
            ),
            email_type=email_type,
            importance=normalize_importance(row.priority or row.importance),
            has_attachments=row.has_attachments or attachment_count > 0,
            attachment_count=attachment_count,
            ai_analyzed=row.ai_analyzed,
            ai_analyzed_at=row.ai_analyzed_at,
            sentiment_score=row.sentiment_score,
            language_code=row.language_code,
            upsell_data=row.upsell_data,
            assigned_agent=row.assigned_agent,
            highlight_color=row.highlight_color,
            agent_priority=row.agent_priority,
            is_read=row.is_read,
            replied=row.replied,
            last_reply_at=row.last_reply_at,
            processing_status=row.processing_status,
            received_at=row.received_date or row.received_at or row.created_at,
            sent_at=row.sent_date or row.sent_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def is_important(self, row: EmailRow) -> bool:
        """High/urgent agent priority, unread, or received recently."""
        if (row.agent_priority or "").lower() in ("high", "urgent"):
            return True
        if not row.is_read:
            return True
        received = row.received_date or row.received_at
        return received is not None and received > self.as_of - timedelta(days=self.recent_days)

    @staticmethod
    def _has_content(row: EmailRow) -> bool:
        return bool(row.html_content or row.text_content or row.plain_content or row.raw_content)


class DeleteKeyTransformer(RowTransformer):
    """Turns every source row into a delete of that row by key."""

    def __init__(self, table: str, key: str = "id"):
        self.table = table
        self.key = key

    def destination_tables(self) -> Dict[str, str]:
        return {self.table: self.key}

    def build(self, row: Dict[str, Any], record: SourceRecord) -> List[DestinationRecord]:
        value = row.get(self.key)
        if value is None:
            raise RecordSkipped(f"{self.key} is null")
        return [DestinationRecord(
            table=self.table,
            key=self.key,
            data={self.key: value},
            source_id=record.id,
            operation=WriteOperation.DELETE,
        )]


def preview_rows(
    transformer: RowTransformer,
    rows: List[Dict[str, Any]],
    table: str = "preview",
    key: str = "id"
) -> List[Dict[str, Any]]:
    """Transform sample rows without touching any store."""
    output = []
    for idx, data in enumerate(rows):
        record = SourceRecord(id=str(data.get(key, idx)), table=table, data=data)
        try:
            destinations = transformer.transform(record)
            output.append({
                "source_id": record.id,
                "records": [d.to_dict() for d in destinations],
            })
        except (ValidationError, RecordSkipped) as e:
            output.append({"source_id": record.id, "skipped": skip_reason(e)})
    return output


def skip_reason(error: Exception) -> str:
    """One-line reason for a skipped row."""
    if isinstance(error, ValidationError):
        parts = []
        for err in error.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()))
            parts.append(f"{loc}: {err.get('msg')}")
        return "; ".join(parts)
    return str(error)
