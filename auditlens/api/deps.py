"""API dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends

from auditlens.services.audit_service import AuditService


def get_audit_service() -> AuditService:
    """Audit service bound to the process-wide registry."""
    return AuditService()


# Type aliases for cleaner signatures
AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]
