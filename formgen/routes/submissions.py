import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from formgen.core.container import ServiceContainer, get_container
from formgen.core.database import get_db
from formgen.core.security import get_current_user_id, get_optional_user_id
from formgen.models.form import Form
from formgen.models.submission import Submission
from formgen.schemas.form import ConditionalRule, FormSchema
from formgen.schemas.submission import SubmissionCreate
from formgen.schemas.webhook import WebhookPayload
from formgen.services.conditional_logic import evaluate_submission, find_missing_required_fields

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/submissions",
    tags=["Submissions"]
)

SUBMISSION_CREATED = "submission.created"


async def get_open_form(db: AsyncSession, form_id: UUID, user_id: Optional[UUID]) -> Form:
    form = await db.get(Form, form_id)
    if not form:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Form not found")
    if not form.is_public and form.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This form is not accepting submissions")
    return form


def request_metadata(request: Request) -> Dict[str, Any]:
    return {
        "userAgent": request.headers.get("user-agent"),
        "ipAddress": request.client.host if request.client else None,
    }


@router.post("/{form_id}", status_code=status.HTTP_201_CREATED)
async def submit_form(
    form_id: UUID,
    body: SubmissionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user_id: Optional[UUID] = Depends(get_optional_user_id),
    container: ServiceContainer = Depends(get_container),
):
    """
    Accept a submission for a public form

    Flow:
    1. Required fields are checked after conditional rules are applied
    2. Submission is saved and the form's counter incremented atomically
    3. Background: one delivery sequence per subscribed webhook
    """
    form = await get_open_form(db, form_id, user_id)

    fields = FormSchema.model_validate(form.schema).fields
    rules = [ConditionalRule.model_validate(rule) for rule in form.conditional_rules or []]

    missing = find_missing_required_fields(fields, rules, body.responses, body.image_urls)
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Missing required fields", "fields": missing}
        )

    submission = Submission(
        form_id=form.id,
        user_id=form.user_id,
        responses=body.responses,
        image_urls=body.image_urls,
        submission_metadata=request_metadata(request),
    )
    db.add(submission)
    await db.execute(
        update(Form)
        .where(Form.id == form.id)
        .values(submission_count=Form.submission_count + 1)
    )
    await db.commit()
    await db.refresh(submission)

    logger.info(f"📝 Submission {submission.id} received for form {form.id}")

    container.webhooks.deliver_webhooks(
        form.id,
        SUBMISSION_CREATED,
        form.webhooks or [],
        WebhookPayload(
            event=SUBMISSION_CREATED,
            form_id=str(form.id),
            submission_id=str(submission.id),
            timestamp=submission.submitted_at,
            data={"responses": body.responses, "imageUrls": body.image_urls},
        ),
    )

    return {
        "message": "Form submitted successfully",
        "submissionId": str(submission.id),
    }


@router.post("/{form_id}/evaluate")
async def evaluate_form(
    form_id: UUID,
    body: SubmissionCreate,
    db: AsyncSession = Depends(get_db),
    user_id: Optional[UUID] = Depends(get_optional_user_id),
):
    """Field visibility and required-ness for a partially filled form"""
    form = await get_open_form(db, form_id, user_id)

    fields = FormSchema.model_validate(form.schema).fields
    rules = [ConditionalRule.model_validate(rule) for rule in form.conditional_rules or []]

    result = evaluate_submission(fields, rules, body.responses)
    return result.model_dump(by_alias=True)


@router.get("/{submission_id}")
async def get_submission(
    submission_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    submission = await db.get(Submission, submission_id)
    if not submission or submission.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found")

    return {
        "submission": {
            "id": str(submission.id),
            "formId": str(submission.form_id),
            "responses": submission.responses,
            "imageUrls": submission.image_urls,
            "metadata": submission.submission_metadata,
            "submittedAt": submission.submitted_at,
        }
    }
