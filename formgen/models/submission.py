# formgen/models/submission.py
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, ForeignKey, DateTime, Index, Uuid
from formgen.core.database import Base, JSONType


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    form_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("forms.id", ondelete="CASCADE"),
        nullable=False
    )

    # Form owner's id
    user_id = Column(Uuid(as_uuid=True), nullable=False)

    responses = Column(JSONType, nullable=False)  # field name -> value
    image_urls = Column(JSONType, nullable=False, default=dict)  # field id -> uploaded file URL

    # "metadata" is reserved on declarative classes
    submission_metadata = Column("metadata", JSONType, nullable=True)  # {userAgent, ipAddress}

    submitted_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    # Indexes
    __table_args__ = (
        Index('idx_submission_form_submitted', 'form_id', 'submitted_at'),
        Index('idx_submission_user_submitted', 'user_id', 'submitted_at'),
    )
