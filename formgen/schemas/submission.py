from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict


class SubmissionCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    responses: Dict[str, Any] = Field(default_factory=dict)
    # Filled in by the upload collaborator: field id -> stored file URL
    image_urls: Dict[str, str] = Field(default_factory=dict)
