# formgen/schemas/form.py

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional, Union


FieldType = Literal[
    "text", "email", "number", "textarea", "select", "checkbox",
    "radio", "date", "file", "image", "url", "phone",
]

UPLOAD_FIELD_TYPES = ("file", "image")

Condition = Literal["equals", "notEquals", "contains", "greaterThan", "lessThan"]
Action = Literal["show", "hide", "require", "unrequire"]

# Tagged union for rule operands; strict members keep "5" a string and true a boolean
RuleValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr, List[StrictStr], None]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        """Public/persisted shape"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FieldValidation(CamelModel):
    # Numbers for number fields, ISO dates for date fields
    min: Optional[Union[float, str]] = None
    max: Optional[Union[float, str]] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    message: Optional[str] = None


class FieldOption(CamelModel):
    label: str
    value: Union[str, int, float, bool]

    @field_validator("label", mode="before")
    @classmethod
    def _label_as_text(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class FormField(CamelModel):
    id: str
    name: str
    label: str
    type: FieldType
    placeholder: Optional[str] = None
    required: bool = False
    validation: Optional[FieldValidation] = None
    options: Optional[List[FieldOption]] = None
    accept: Optional[str] = None

    @field_validator("options", mode="before")
    @classmethod
    def _coerce_plain_options(cls, value):
        # Models sometimes answer with ["A", "B"] instead of [{label, value}]
        if isinstance(value, list):
            return [
                {"label": str(item), "value": item} if isinstance(item, (str, int, float)) else item
                for item in value
            ]
        return value


class FormSchema(CamelModel):
    title: str
    description: Optional[str] = None
    fields: List[FormField]


class ConditionalRule(CamelModel):
    id: str
    field_id: str
    condition: Condition
    value: RuleValue = None
    action: Action
    target_field_ids: List[str] = Field(default_factory=list)


class Webhook(CamelModel):
    id: str
    url: str
    secret: str = ""
    events: List[str] = Field(default_factory=list)
    enabled: bool = True


class Theme(CamelModel):
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    font_family: Optional[str] = None
    logo_url: Optional[str] = None
    custom_css: Optional[str] = Field(default=None, alias="customCSS")


class EmailNotification(CamelModel):
    enabled: bool = False
    recipients: List[str] = Field(default_factory=list)
    subject: Optional[str] = None
    include_responses: bool = True


class FormContext(BaseModel):
    """Retrieved past form, used only while building one generation prompt"""
    purpose: str
    fields: List[str]
    title: str
    summary: str


class GeneratedForm(BaseModel):
    form_schema: FormSchema
    summary: str
    purpose: str
    field_types: List[str]


# ---------- Request bodies ----------

class GenerateFormRequest(BaseModel):
    prompt: str

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Prompt is required")
        return value


class FormUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    form_schema: Optional[FormSchema] = Field(default=None, alias="schema")
    is_public: Optional[bool] = None
    theme: Optional[Theme] = None
    email_notifications: Optional[EmailNotification] = None
    conditional_rules: Optional[List[ConditionalRule]] = None


class WebhookCreate(CamelModel):
    url: str
    events: List[str]
    secret: str = ""

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("Valid URL is required")
        return value


class WebhookUpdate(CamelModel):
    url: Optional[str] = None
    events: Optional[List[str]] = None
    secret: Optional[str] = None
    enabled: Optional[bool] = None
