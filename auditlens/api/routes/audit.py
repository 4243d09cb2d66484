"""Audit routes."""

import logging

from fastapi import APIRouter, HTTPException, status

from auditlens.api.deps import AuditServiceDep
from auditlens.errors import InvalidInputError, UnsupportedLanguageError
from auditlens.schemas.audit import AuditRequest, AuditResponse, FindingResponse, LanguageListResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/audit", response_model=AuditResponse)
async def audit_source(request: AuditRequest, service: AuditServiceDep):
    """Analyze one source file.

    Returns the findings in category order with the code hash and summary
    used for the ledger entry.
    """
    try:
        report = await service.audit(request.language, request.source, request.file_name)
    except UnsupportedLanguageError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.exception(f"Audit of {request.file_name} failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Analysis failed: {e}",
        )

    return AuditResponse(
        findings=[FindingResponse.from_finding(f) for f in report.findings],
        code_hash=report.code_hash,
        summary=report.summary,
    )


@router.get("/languages", response_model=LanguageListResponse)
async def list_languages(service: AuditServiceDep):
    """List the language tags accepted by /api/audit."""
    return LanguageListResponse(languages=service.languages)
