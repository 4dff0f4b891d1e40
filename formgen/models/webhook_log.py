# formgen/models/webhook_log.py
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Index, Integer, Text, Uuid
from formgen.core.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class WebhookLog(Base):
    """One row per concluded delivery sequence, never updated afterwards"""

    __tablename__ = "webhook_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    webhook_id = Column(String, nullable=False, index=True)
    form_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    event = Column(String, nullable=False)

    status = Column(String, nullable=False)  # 'success', 'failed', 'retrying'
    attempts = Column(Integer, nullable=False, default=1)
    last_attempt_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Last HTTP response seen, if any
    response_status_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)  # Truncated to 1000 chars

    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index('idx_webhook_log_form_created', 'form_id', 'created_at'),
    )
