"""
Provider Credentialing API routes -- TC-CRED-007
=================================================

Endpoints for the provider credentialing workflow:

  POST /api/v1/credentialing/providers/{provider_id}/documents      -- Upload a document
  GET  /api/v1/credentialing/providers/{provider_id}/documents/{id}/content
  POST /api/v1/credentialing/providers/{provider_id}/npi            -- Submit an NPI
  POST /api/v1/credentialing/providers/{provider_id}/reverify       -- Force re-verification
  POST /api/v1/credentialing/providers/{provider_id}/dea            -- Submit a DEA number
  GET  /api/v1/credentialing/providers/{provider_id}/status         -- Derived status view
  GET  /api/v1/credentialing/providers/{provider_id}/history        -- Audit trail
  POST /api/v1/credentialing/providers/{provider_id}/decisions      -- Admin decision
  GET  /api/v1/credentialing/review-queue                           -- Admin review queue
  GET  /api/v1/credentialing/expiration-alerts                      -- Expiring documents
  POST /api/v1/credentialing/npi/verify                             -- Standalone NPI check
  GET  /api/v1/credentialing/npi/search                             -- NPI registry search
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import NoReturn, Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, Response, UploadFile, status

from therapyconnect.api.deps import DBSession, Registry, Service
from therapyconnect.api.schemas.credentialing import (
    AdminDecisionOut,
    AdminDecisionRequest,
    DEASubmissionRequest,
    DEAValidationOut,
    DecisionOut,
    DocumentOut,
    DocumentSubmissionOut,
    ExclusionCheckOut,
    NPIRecordOut,
    NPISearchOut,
    NPISubmissionOut,
    NPISubmissionRequest,
    NPIVerificationOut,
    NPIVerifyRequest,
    ProfileHistoryOut,
    ProfileStatusOut,
    ProviderAlertsOut,
    ReviewQueueItemOut,
    ReviewQueueOut,
    StatusChangeOut,
)
from therapyconnect.core.config import settings
from therapyconnect.core.exceptions import (
    CredentialingError,
    CredentialingInputError,
    DocumentNotFound,
    ExternalUnavailable,
    FileTooLarge,
    InvalidTransition,
    ProfileNotFound,
)
from therapyconnect.models import DocumentType
from therapyconnect.services.credentialingService import NPISubmission
from therapyconnect.services.documentLifecycle import FileUpload
from therapyconnect.services.reviewQueue import list_expiration_alerts, list_review_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credentialing", tags=["Credentialing"])


# Most specific class first
_HTTP_STATUS_BY_ERROR: list[tuple[type[CredentialingError], int]] = [
    (FileTooLarge, 413),
    (CredentialingInputError, 422),
    (ProfileNotFound, 404),
    (DocumentNotFound, 404),
    (InvalidTransition, 409),
    (ExternalUnavailable, 503),
]


def _raise_from_credentialing_error(exc: CredentialingError) -> NoReturn:
    """Convert a service-layer ``CredentialingError`` into an HTTPException
    carrying the error code, message and details."""
    status_code = next(
        (code for cls, code in _HTTP_STATUS_BY_ERROR if isinstance(exc, cls)),
        500,
    )
    if status_code == 503:
        logger.warning("Credentialing dependency unavailable: %s", exc.message)
    raise HTTPException(
        status_code=status_code,
        detail={"code": exc.code, "message": exc.message, "details": exc.details},
    ) from exc


def _npi_submission_out(provider_id: uuid.UUID, result: NPISubmission) -> NPISubmissionOut:
    return NPISubmissionOut(
        provider_id=provider_id,
        npi_number=result.npi_number,
        status_change=StatusChangeOut.from_change(result.status_change),
        verification=(
            NPIVerificationOut.model_validate(result.verification)
            if result.verification is not None
            else None
        ),
        exclusion=(
            ExclusionCheckOut.model_validate(result.exclusion)
            if result.exclusion is not None
            else None
        ),
        warnings=list(result.warnings),
    )


# ---------------------------------------------------------------------------
# POST /providers/{provider_id}/documents
# ---------------------------------------------------------------------------

@router.post(
    "/providers/{provider_id}/documents",
    response_model=DocumentSubmissionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a credential document",
    description=(
        "Upload a license, insurance certificate or other supporting document. "
        "The new document supersedes the current document of the same type "
        "and the provider's credentialing status is recomputed."
    ),
)
async def submit_document_route(
    provider_id: uuid.UUID,
    db: DBSession,
    service: Service,
    file: UploadFile = File(..., description="Document file to upload"),
    document_type: DocumentType = Form(..., description="Type of credential document"),
    declared_expiration: Optional[date] = Form(
        None, description="Expiration date printed on the document (YYYY-MM-DD)"
    ),
) -> DocumentSubmissionOut:
    # Read one byte past the limit so oversize uploads are detected without
    # buffering the whole file
    contents = await file.read(settings.max_document_bytes + 1)
    upload = FileUpload(
        file_name=file.filename or "upload",
        mime_type=file.content_type or "application/octet-stream",
        content=contents,
    )

    try:
        result = await service.submit_document(
            db, provider_id, document_type, upload, declared_expiration
        )
    except CredentialingError as exc:
        _raise_from_credentialing_error(exc)

    return DocumentSubmissionOut(
        provider_id=provider_id,
        document=DocumentOut(
            document_id=result.document.id,
            document_type=result.document.document_type,
            file_name=result.document.file_name,
            mime_type=result.document.mime_type,
            size_bytes=result.document.size_bytes,
            declared_expiration=result.document.declared_expiration,
            uploaded_at=result.document.uploaded_at,
            validity=result.validity,
        ),
        superseded_document_id=result.superseded.id if result.superseded else None,
        status_change=StatusChangeOut.from_change(result.status_change),
        warnings=list(result.warnings),
    )


@router.get(
    "/providers/{provider_id}/documents/{document_id}/content",
    summary="Download a stored credential document",
    response_class=Response,
)
async def get_document_content_route(
    provider_id: uuid.UUID,
    document_id: uuid.UUID,
    db: DBSession,
    service: Service,
) -> Response:
    try:
        document, content = await service.get_document_content(db, provider_id, document_id)
    except CredentialingError as exc:
        _raise_from_credentialing_error(exc)

    return Response(
        content=content,
        media_type=document.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{document.file_name}"'},
    )


# ---------------------------------------------------------------------------
# POST /providers/{provider_id}/npi
# ---------------------------------------------------------------------------

@router.post(
    "/providers/{provider_id}/npi",
    response_model=NPISubmissionOut,
    summary="Submit the provider's NPI",
    description=(
        "Record the provider's National Provider Identifier and legal name. "
        "Format and check digit are validated locally; once documents are "
        "complete the NPI registry lookup and exclusion screening run."
    ),
)
async def submit_npi_route(
    provider_id: uuid.UUID,
    body: NPISubmissionRequest,
    db: DBSession,
    service: Service,
) -> NPISubmissionOut:
    try:
        result = await service.submit_npi(db, provider_id, body.npi_number, body.legal_name)
    except CredentialingError as exc:
        _raise_from_credentialing_error(exc)
    return _npi_submission_out(provider_id, result)


@router.post(
    "/providers/{provider_id}/reverify",
    response_model=NPISubmissionOut,
    summary="Re-run NPI and exclusion verification",
)
async def reverify_route(
    provider_id: uuid.UUID,
    db: DBSession,
    service: Service,
) -> NPISubmissionOut:
    try:
        result = await service.reverify(db, provider_id)
    except CredentialingError as exc:
        _raise_from_credentialing_error(exc)
    return _npi_submission_out(provider_id, result)


# ---------------------------------------------------------------------------
# POST /providers/{provider_id}/dea
# ---------------------------------------------------------------------------

@router.post(
    "/providers/{provider_id}/dea",
    response_model=DEAValidationOut,
    summary="Submit the provider's DEA number",
    description=(
        "Record the provider's DEA registration number and validate its "
        "registrant type, last-name initial and check digit.  A failed "
        "validation is returned and kept for the reviewer; it does not block "
        "credentialing."
    ),
)
async def submit_dea_route(
    provider_id: uuid.UUID,
    body: DEASubmissionRequest,
    db: DBSession,
    service: Service,
) -> DEAValidationOut:
    try:
        result = await service.submit_dea(db, provider_id, body.dea_number)
    except CredentialingError as exc:
        _raise_from_credentialing_error(exc)
    return DEAValidationOut.model_validate(result)


# ---------------------------------------------------------------------------
# GET /providers/{provider_id}/status
# ---------------------------------------------------------------------------

@router.get(
    "/providers/{provider_id}/status",
    response_model=ProfileStatusOut,
    summary="Get the provider's credentialing status",
    description=(
        "Returns the derived credentialing status, per-document validity, "
        "missing required documents and the reasons the profile is blocked. "
        "Expired documents are applied before the status is reported."
    ),
)
async def get_status_route(
    provider_id: uuid.UUID,
    db: DBSession,
    service: Service,
) -> ProfileStatusOut:
    try:
        view = await service.get_profile_status(db, provider_id)
    except CredentialingError as exc:
        _raise_from_credentialing_error(exc)
    return ProfileStatusOut.model_validate(view)


@router.get(
    "/providers/{provider_id}/history",
    response_model=ProfileHistoryOut,
    summary="Get the provider's credentialing audit trail",
)
async def get_history_route(
    provider_id: uuid.UUID,
    db: DBSession,
    service: Service,
) -> ProfileHistoryOut:
    try:
        history = await service.get_history(db, provider_id)
    except CredentialingError as exc:
        _raise_from_credentialing_error(exc)
    return ProfileHistoryOut.model_validate(history)


# ---------------------------------------------------------------------------
# POST /providers/{provider_id}/decisions
# ---------------------------------------------------------------------------

@router.post(
    "/providers/{provider_id}/decisions",
    response_model=AdminDecisionOut,
    summary="Record an admin credentialing decision",
    description=(
        "Approve, reject (reason required) or request more information for a "
        "provider in pending_review.  Replaying a decision that is already in "
        "effect returns the existing decision with changed=false."
    ),
)
async def admin_decide_route(
    provider_id: uuid.UUID,
    body: AdminDecisionRequest,
    db: DBSession,
    service: Service,
) -> AdminDecisionOut:
    try:
        outcome = await service.admin_decide(
            db, provider_id, body.reviewer_id, body.decision, body.reason
        )
    except CredentialingError as exc:
        _raise_from_credentialing_error(exc)

    return AdminDecisionOut(
        provider_id=provider_id,
        decision=DecisionOut.model_validate(outcome.decision),
        changed=outcome.changed,
        status_change=StatusChangeOut.from_change(outcome.status_change),
    )


# ---------------------------------------------------------------------------
# Admin read models
# ---------------------------------------------------------------------------

@router.get(
    "/review-queue",
    response_model=ReviewQueueOut,
    summary="List providers awaiting admin review (oldest first)",
)
async def review_queue_route(
    db: DBSession,
    service: Service,
    limit: Optional[int] = Query(None, ge=1, le=500),
) -> ReviewQueueOut:
    items = await list_review_queue(db, now=service.now(), limit=limit)
    return ReviewQueueOut(
        total=len(items),
        items=[ReviewQueueItemOut.model_validate(item) for item in items],
    )


@router.get(
    "/expiration-alerts",
    response_model=list[ProviderAlertsOut],
    summary="List current documents that are expiring soon or expired",
)
async def expiration_alerts_route(
    db: DBSession,
    service: Service,
    warning_days: Optional[int] = Query(None, ge=0, le=365),
) -> list[ProviderAlertsOut]:
    alerts = await list_expiration_alerts(db, now=service.now(), warning_days=warning_days)
    return [ProviderAlertsOut.model_validate(a) for a in alerts]


# ---------------------------------------------------------------------------
# NPI tools
# ---------------------------------------------------------------------------

@router.post(
    "/npi/verify",
    response_model=NPIVerificationOut,
    summary="Verify an NPI against the CMS registry",
)
async def verify_npi_route(
    body: NPIVerifyRequest,
    db: DBSession,
    service: Service,
) -> NPIVerificationOut:
    try:
        result = await service.verify_npi(db, body.npi_number, force=body.force)
    except CredentialingError as exc:
        _raise_from_credentialing_error(exc)
    return NPIVerificationOut.model_validate(result)


@router.get(
    "/npi/search",
    response_model=NPISearchOut,
    summary="Search the CMS NPI registry",
)
async def search_npi_route(
    registry: Registry,
    first_name: Optional[str] = Query(None, max_length=100),
    last_name: Optional[str] = Query(None, max_length=100),
    organization_name: Optional[str] = Query(None, max_length=200),
    city: Optional[str] = Query(None, max_length=100),
    state: Optional[str] = Query(None, min_length=2, max_length=2),
    postal_code: Optional[str] = Query(None, max_length=10),
    taxonomy_description: Optional[str] = Query(None, max_length=200),
    limit: int = Query(10, ge=1, le=200),
) -> NPISearchOut:
    try:
        records = await registry.search(
            first_name=first_name,
            last_name=last_name,
            organization_name=organization_name,
            city=city,
            state=state,
            postal_code=postal_code,
            taxonomy_description=taxonomy_description,
            limit=limit,
        )
    except CredentialingError as exc:
        _raise_from_credentialing_error(exc)
    return NPISearchOut(
        count=len(records),
        results=[NPIRecordOut.model_validate(r) for r in records],
    )
