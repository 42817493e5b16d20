"""Row schemas for the CRM email tables.

``EmailRow`` is the source side and is deliberately lenient: only ``id`` and
``message_id`` are mandatory, every other column falls back to a default when
it is missing or unreadable. The destination schemas are what gets written.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, field_validator

TRUE_STRINGS = {"true", "t", "1", "yes", "y", "on"}

TEXT_COLUMNS = (
    "organization_id", "user_id", "email_account_id", "thread_id", "folder",
    "from_address", "from_name", "sender", "to_address", "recipient",
    "text_content", "html_content", "plain_content", "raw_content",
    "priority", "importance", "email_type", "language_code",
    "assigned_agent", "highlight_color", "agent_priority",
)

BOOL_COLUMNS = ("has_attachments", "ai_analyzed", "is_read", "replied")

TIMESTAMP_COLUMNS = (
    "ai_analyzed_at", "last_reply_at", "received_date", "received_at",
    "sent_date", "sent_at", "created_at", "updated_at",
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a timestamp leniently. Unparseable values become None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            dt = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        try:
            dt = date_parser.parse(str(value))
        except (ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in TRUE_STRINGS


class EmailRow(BaseModel):
    """A row of the legacy ``emails`` table."""

    model_config = ConfigDict(extra="allow")

    id: str
    message_id: str

    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    email_account_id: Optional[str] = None
    thread_id: Optional[str] = None
    folder: Optional[str] = None

    from_address: Optional[str] = None
    from_name: Optional[str] = None
    sender: Optional[str] = None
    to_address: Optional[str] = None
    recipient: Optional[str] = None
    subject: str = ""

    text_content: Optional[str] = None
    html_content: Optional[str] = None
    plain_content: Optional[str] = None
    raw_content: Optional[str] = None
    attachments: Any = None
    has_attachments: bool = False

    priority: Optional[str] = None
    importance: Optional[str] = None
    email_type: Optional[str] = None

    ai_analyzed: bool = False
    ai_analyzed_at: Optional[datetime] = None
    sentiment_score: Optional[float] = None
    language_code: Optional[str] = None
    upsell_data: Any = None
    assigned_agent: Optional[str] = None
    highlight_color: Optional[str] = None
    agent_priority: Optional[str] = None

    is_read: bool = False
    replied: bool = False
    last_reply_at: Optional[datetime] = None
    processing_status: str = "pending"

    received_date: Optional[datetime] = None
    received_at: Optional[datetime] = None
    sent_date: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _require_id(cls, value: Any) -> str:
        if value is None or str(value).strip() == "":
            raise ValueError("id is required")
        return str(value).strip()

    @field_validator("message_id", mode="before")
    @classmethod
    def _require_message_id(cls, value: Any) -> str:
        if value is None or str(value).strip() == "":
            raise ValueError("message_id is required")
        return str(value).strip()

    @field_validator(*TEXT_COLUMNS, mode="before")
    @classmethod
    def _text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return value if isinstance(value, str) else str(value)

    @field_validator(*BOOL_COLUMNS, mode="before")
    @classmethod
    def _bool(cls, value: Any) -> bool:
        return parse_bool(value)

    @field_validator(*TIMESTAMP_COLUMNS, mode="before")
    @classmethod
    def _timestamp(cls, value: Any) -> Optional[datetime]:
        return parse_timestamp(value)

    @field_validator("subject", mode="before")
    @classmethod
    def _subject(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("processing_status", mode="before")
    @classmethod
    def _processing_status(cls, value: Any) -> str:
        return "pending" if value is None or value == "" else str(value)

    @field_validator("sentiment_score", mode="before")
    @classmethod
    def _score(cls, value: Any) -> Optional[float]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None


class EmailIndexRow(BaseModel):
    """Lightweight metadata row in ``email_index``."""

    id: Optional[str] = None
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    email_account_id: Optional[str] = None
    message_id: str
    thread_id: Optional[str] = None
    folder_name: str = "INBOX"

    sender_email: str = ""
    sender_name: Optional[str] = None
    recipient_email: Optional[str] = None
    subject: str = ""
    preview_text: str = ""

    email_type: str = "received"
    importance: str = "normal"
    has_attachments: bool = False
    attachment_count: int = 0

    ai_analyzed: bool = False
    ai_analyzed_at: Optional[datetime] = None
    sentiment_score: Optional[float] = None
    language_code: Optional[str] = None
    upsell_data: Any = None
    assigned_agent: Optional[str] = None
    highlight_color: Optional[str] = None
    agent_priority: Optional[str] = None

    is_read: bool = False
    replied: bool = False
    last_reply_at: Optional[datetime] = None
    processing_status: str = "pending"

    received_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EmailContentCacheRow(BaseModel):
    """Full message body kept in ``email_content_cache``."""

    message_id: str
    raw_content: Optional[str] = None
    html_content: Optional[str] = None
    plain_content: Optional[str] = None
    attachments: Any = None
    cached_at: datetime
    access_count: int = 1
