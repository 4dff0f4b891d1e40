# formgen/models/form.py
import uuid
from sqlalchemy import Boolean, Column, String, DateTime, Index, Integer, Text, Uuid, ForeignKey
from sqlalchemy.sql import func
from formgen.core.database import Base, JSONType


class Form(Base):
    __tablename__ = "forms"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Owner id comes from the identity provider's token
    user_id = Column(Uuid(as_uuid=True), nullable=False)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    prompt = Column(Text, nullable=False)

    # FormSchema: {title, description, fields: [FormField]}
    schema = Column(JSONType, nullable=False)

    # AI metadata used by semantic memory
    summary = Column(Text, nullable=False)
    purpose = Column(String, nullable=False, default="other")
    field_types = Column(JSONType, nullable=False, default=list)
    field_names = Column(JSONType, nullable=False, default=list)  # Ordered, for metadata-only hydration

    # Sharing
    is_public = Column(Boolean, nullable=False, default=True)
    is_template = Column(Boolean, nullable=False, default=False)
    source_form_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("forms.id", ondelete="SET NULL"),
        nullable=True
    )
    submission_count = Column(Integer, nullable=False, default=0)

    # Owner configuration, stored in their public camelCase shapes
    email_notifications = Column(JSONType, nullable=True)  # EmailNotification
    webhooks = Column(JSONType, nullable=False, default=list)  # [Webhook]
    theme = Column(JSONType, nullable=True)  # Theme
    conditional_rules = Column(JSONType, nullable=False, default=list)  # [ConditionalRule], order matters

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    # Indexes
    __table_args__ = (
        Index('idx_form_user_created', 'user_id', 'created_at'),
        Index('idx_form_user_purpose', 'user_id', 'purpose'),
        Index('idx_form_template_public', 'is_template', 'is_public'),
    )
