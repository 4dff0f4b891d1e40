# formgen/schemas/webhook.py

from datetime import datetime
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Any, Dict, Optional
from uuid import UUID


class WebhookPayload(BaseModel):
    """Outbound body: {event, formId, submissionId, timestamp, data}"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event: str
    form_id: str
    submission_id: str
    timestamp: datetime
    data: Dict[str, Any]

    def to_body(self) -> bytes:
        """Exact bytes that are sent and signed"""
        return self.model_dump_json(by_alias=True).encode("utf-8")


class WebhookTestResult(BaseModel):
    success: bool
    message: str


class WebhookLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: UUID
    webhook_id: str
    form_id: UUID
    event: str
    status: str
    attempts: int
    last_attempt_at: datetime
    response_status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
