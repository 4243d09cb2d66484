"""Audit request orchestration for the HTTP layer."""

import logging

from auditlens.analyzers.registry import analyze, get_registry
from auditlens.config import get_settings
from auditlens.errors import InvalidInputError
from auditlens.services.report_service import AuditReport, build_report

logger = logging.getLogger(__name__)


class AuditService:
    """Runs one audit request end to end."""

    def __init__(self, registry=None, settings=None):
        self.registry = registry or get_registry()
        self.settings = settings or get_settings()

    @property
    def languages(self) -> list[str]:
        return self.registry.languages

    def _check_size(self, source: str) -> None:
        size = len(source.encode("utf-8"))
        if size > self.settings.max_source_bytes:
            raise InvalidInputError(
                f"source is {size} bytes, larger than the {self.settings.max_source_bytes} byte limit"
            )

    async def audit(self, language: str, source: str, file_name: str) -> AuditReport:
        if isinstance(source, str):
            self._check_size(source)
        logger.info(f"Audit requested for {file_name} ({language})")

        findings = await analyze(language, source, file_name, registry=self.registry)
        report = build_report(source, findings)

        logger.info(f"Audit of {file_name} finished with {len(findings)} finding(s), hash {report.code_hash[:12]}")
        return report
