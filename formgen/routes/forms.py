import logging
import math
import uuid
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from formgen.core.container import ServiceContainer, get_container
from formgen.core.database import get_db
from formgen.core.security import get_current_user_id, get_optional_user_id
from formgen.models.form import Form
from formgen.models.submission import Submission
from formgen.schemas.form import (
    ConditionalRule,
    FormSchema,
    FormUpdate,
    GenerateFormRequest,
    Webhook,
    WebhookCreate,
    WebhookUpdate,
)
from formgen.schemas.webhook import WebhookLogOut
from formgen.services.conditional_logic import rule_warnings

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/forms",
    tags=["Forms"]
)


# ---------- Helpers ----------

def share_link(form: Form) -> str:
    return f"/form/{form.id}"


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def serialize_form(form: Form, **extra: Any) -> Dict[str, Any]:
    return {
        "id": str(form.id),
        "title": form.title,
        "description": form.description,
        "schema": form.schema,
        "purpose": form.purpose,
        "fieldTypes": form.field_types,
        "isPublic": form.is_public,
        "isTemplate": form.is_template,
        "sourceFormId": str(form.source_form_id) if form.source_form_id else None,
        "submissionCount": form.submission_count,
        "emailNotifications": form.email_notifications,
        "webhooks": form.webhooks or [],
        "theme": form.theme,
        "conditionalRules": form.conditional_rules or [],
        "shareLink": share_link(form),
        "createdAt": form.created_at,
        **extra,
    }


def apply_schema(form: Form, form_schema: FormSchema) -> None:
    form.schema = form_schema.to_json()
    form.field_types = list(dict.fromkeys(field.type for field in form_schema.fields))
    form.field_names = [field.name for field in form_schema.fields]


def load_rules(form: Form) -> List[ConditionalRule]:
    return [ConditionalRule.model_validate(rule) for rule in form.conditional_rules or []]


async def get_owned_form(db: AsyncSession, form_id: UUID, user_id: UUID) -> Form:
    result = await db.execute(
        select(Form).where(Form.id == form_id, Form.user_id == user_id)
    )
    form = result.scalar_one_or_none()
    if not form:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Form not found")
    return form


def find_webhook(form: Form, webhook_id: str) -> Optional[int]:
    for index, webhook in enumerate(form.webhooks or []):
        if webhook.get("id") == webhook_id:
            return index
    return None


# ---------- Generation ----------

@router.post("/generate", status_code=status.HTTP_201_CREATED)
async def generate_form(
    body: GenerateFormRequest,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """
    Generate a new form from a natural language prompt

    Flow:
    1. Generator retrieves the user's similar past forms and prompts the LLM
    2. Form is saved
    3. Background: summary embedding is upserted for future retrieval
    """
    logger.info(f"🤖 Generating form for user {user_id}: '{body.prompt[:80]}'")

    try:
        generated = await container.generator.generate_form(str(user_id), body.prompt)
    except Exception as e:
        logger.error(f"Form generation failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to generate form"
        )

    form = Form(
        user_id=user_id,
        title=generated.form_schema.title,
        description=generated.form_schema.description or "",
        prompt=body.prompt,
        summary=generated.summary,
        purpose=generated.purpose,
        is_public=True,
        webhooks=[],
        conditional_rules=[],
    )
    apply_schema(form, generated.form_schema)

    db.add(form)
    await db.commit()
    await db.refresh(form)
    logger.info(f"✅ Created form {form.id} with {len(form.field_names)} fields")

    container.runner.submit(container.generator.store_form_embedding(form), name=f"embed-{form.id}")

    return {
        "message": "Form generated successfully",
        "form": serialize_form(form),
    }


# ---------- Listing ----------

@router.get("/")
async def list_forms(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    offset = (page - 1) * limit

    forms = (await db.execute(
        select(Form)
        .where(Form.user_id == user_id)
        .order_by(Form.created_at.desc())
        .offset(offset)
        .limit(limit)
    )).scalars().all()
    total = (await db.execute(
        select(func.count()).select_from(Form).where(Form.user_id == user_id)
    )).scalar_one()

    return {
        "forms": [
            {
                "id": str(form.id),
                "title": form.title,
                "description": form.description,
                "purpose": form.purpose,
                "submissionCount": form.submission_count,
                "isPublic": form.is_public,
                "shareLink": share_link(form),
                "createdAt": form.created_at,
            }
            for form in forms
        ],
        "pagination": pagination(page, limit, total),
    }


@router.get("/templates/list")
async def list_templates(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    conditions = [Form.is_template.is_(True), Form.is_public.is_(True)]
    if category:
        conditions.append(Form.purpose == category)

    templates = (await db.execute(
        select(Form)
        .where(*conditions)
        .order_by(Form.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )).scalars().all()
    total = (await db.execute(
        select(func.count()).select_from(Form).where(*conditions)
    )).scalar_one()

    return {
        "templates": [
            {
                "id": str(form.id),
                "title": form.title,
                "description": form.description,
                "purpose": form.purpose,
                "fieldTypes": form.field_types,
                "submissionCount": form.submission_count,
                "createdAt": form.created_at,
                "theme": form.theme,
            }
            for form in templates
        ],
        "pagination": pagination(page, limit, total),
    }


# ---------- Single form ----------

@router.get("/{form_id}")
async def get_form(
    form_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: Optional[UUID] = Depends(get_optional_user_id),
):
    form = await db.get(Form, form_id)
    if not form:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Form not found")

    is_owner = user_id is not None and user_id == form.user_id
    if not form.is_public and not is_owner:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This form is not public")

    data = serialize_form(form, isOwner=is_owner)
    if not is_owner:
        # Endpoint configuration is private to the owner
        data.pop("webhooks")
        data.pop("emailNotifications")
    return {"form": data}


@router.put("/{form_id}")
async def update_form(
    form_id: UUID,
    body: FormUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """
    Update a form

    Conditional rules are saved as given; cycles and references to
    unknown fields come back as warnings.
    """
    form = await get_owned_form(db, form_id, user_id)

    if body.title:
        form.title = body.title
    if body.description is not None:
        form.description = body.description
    if body.form_schema is not None:
        apply_schema(form, body.form_schema)
    if body.is_public is not None:
        form.is_public = body.is_public
    if body.theme is not None:
        form.theme = body.theme.to_json()
    if body.email_notifications is not None:
        form.email_notifications = body.email_notifications.to_json()
    if body.conditional_rules is not None:
        form.conditional_rules = [rule.to_json() for rule in body.conditional_rules]

    warnings = []
    if body.conditional_rules is not None or body.form_schema is not None:
        fields = FormSchema.model_validate(form.schema).fields
        warnings = rule_warnings(load_rules(form), fields)
        for warning in warnings:
            logger.warning(f"Form {form.id} rules: {warning}")

    await db.commit()
    await db.refresh(form)

    return {
        "message": "Form updated successfully",
        "form": serialize_form(form),
        "warnings": warnings,
    }


@router.delete("/{form_id}")
async def delete_form(
    form_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    form = await get_owned_form(db, form_id, user_id)

    await db.execute(delete(Submission).where(Submission.form_id == form.id))
    await db.delete(form)
    await db.commit()

    container.runner.submit(container.memory.delete_form_embedding(str(form_id)), name=f"unembed-{form_id}")

    return {"message": "Form deleted successfully"}


@router.get("/{form_id}/submissions")
async def list_submissions(
    form_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    await get_owned_form(db, form_id, user_id)

    submissions = (await db.execute(
        select(Submission)
        .where(Submission.form_id == form_id)
        .order_by(Submission.submitted_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )).scalars().all()
    total = (await db.execute(
        select(func.count()).select_from(Submission).where(Submission.form_id == form_id)
    )).scalar_one()

    return {
        "submissions": [
            {
                "id": str(sub.id),
                "responses": sub.responses,
                "imageUrls": sub.image_urls,
                "submittedAt": sub.submitted_at,
            }
            for sub in submissions
        ],
        "pagination": pagination(page, limit, total),
    }


@router.post("/{form_id}/duplicate", status_code=status.HTTP_201_CREATED)
async def duplicate_form(
    form_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    original = await db.get(Form, form_id)
    if not original:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Form not found")

    if not original.is_public and original.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot duplicate this form")

    duplicate = Form(
        user_id=user_id,
        title=f"{original.title} (Copy)",
        description=original.description,
        prompt=original.prompt,
        schema=original.schema,
        summary=original.summary,
        purpose=original.purpose,
        field_types=list(original.field_types or []),
        field_names=list(original.field_names or []),
        is_public=True,
        source_form_id=original.id,
        email_notifications=original.email_notifications,
        webhooks=[],
        theme=original.theme,
        conditional_rules=list(original.conditional_rules or []),
    )

    db.add(duplicate)
    await db.commit()
    await db.refresh(duplicate)

    container.runner.submit(container.generator.store_form_embedding(duplicate), name=f"embed-{duplicate.id}")

    return {
        "message": "Form duplicated successfully",
        "form": serialize_form(duplicate),
    }


@router.post("/{form_id}/mark-template")
async def toggle_template(
    form_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    form = await get_owned_form(db, form_id, user_id)
    form.is_template = not form.is_template
    await db.commit()

    return {
        "message": f"Form {'added to' if form.is_template else 'removed from'} templates",
        "isTemplate": form.is_template,
    }


# ---------- Webhooks ----------

@router.post("/{form_id}/webhooks", status_code=status.HTTP_201_CREATED)
async def add_webhook(
    form_id: UUID,
    body: WebhookCreate,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    form = await get_owned_form(db, form_id, user_id)

    webhook = Webhook(
        id=str(uuid.uuid4()),
        url=body.url,
        secret=body.secret,
        events=body.events,
        enabled=True,
    )
    # Reassign so the JSON column is flagged dirty
    form.webhooks = [*(form.webhooks or []), webhook.to_json()]
    await db.commit()

    return {
        "message": "Webhook added successfully",
        "webhook": webhook.to_json(),
    }


@router.put("/{form_id}/webhooks/{webhook_id}")
async def update_webhook(
    form_id: UUID,
    webhook_id: str,
    body: WebhookUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    form = await get_owned_form(db, form_id, user_id)

    index = find_webhook(form, webhook_id)
    if index is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")

    webhooks = list(form.webhooks)
    webhook = Webhook.model_validate(webhooks[index])
    changes = body.model_dump(exclude_none=True)
    webhook = webhook.model_copy(update=changes)
    webhooks[index] = webhook.to_json()
    form.webhooks = webhooks
    await db.commit()

    return {
        "message": "Webhook updated successfully",
        "webhook": webhooks[index],
    }


@router.delete("/{form_id}/webhooks/{webhook_id}")
async def delete_webhook(
    form_id: UUID,
    webhook_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    form = await get_owned_form(db, form_id, user_id)

    if find_webhook(form, webhook_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")

    form.webhooks = [wh for wh in form.webhooks if wh.get("id") != webhook_id]
    await db.commit()

    return {"message": "Webhook deleted successfully"}


@router.post("/{form_id}/webhooks/{webhook_id}/test")
async def test_webhook(
    form_id: UUID,
    webhook_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    form = await get_owned_form(db, form_id, user_id)

    index = find_webhook(form, webhook_id)
    if index is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")

    webhook = Webhook.model_validate(form.webhooks[index])
    result = await container.webhooks.test_webhook(webhook.url, webhook.secret)
    return result.model_dump()


@router.get("/{form_id}/webhook-logs")
async def get_webhook_logs(
    form_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    container: ServiceContainer = Depends(get_container),
):
    form = await get_owned_form(db, form_id, user_id)

    logs, total = await container.webhooks.get_webhook_logs(form.id, page, limit)

    return {
        "logs": [
            WebhookLogOut.model_validate(log).model_dump(mode="json", by_alias=True)
            for log in logs
        ],
        "pagination": pagination(page, limit, total),
    }
