"""Report digest and summary for the ledger collaborator."""

import hashlib
from dataclasses import dataclass, field
from typing import Optional

from auditlens.analyzers.base import Finding
from auditlens.config import get_settings


@dataclass
class AuditReport:
    """Findings plus the two values a ledger entry is keyed on."""

    findings: list[Finding] = field(default_factory=list)
    code_hash: str = ""
    summary: str = ""


def code_hash(source: str) -> str:
    """Lowercase hex SHA-256 of the UTF-8 encoded source."""
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


def build_summary(findings: list[Finding], empty_summary: Optional[str] = None) -> str:
    """One message per line, or the placeholder when nothing was found."""
    if not findings:
        return empty_summary if empty_summary is not None else get_settings().empty_summary
    return "\n".join(f.message for f in findings)


def build_report(source: str, findings: list[Finding]) -> AuditReport:
    return AuditReport(
        findings=list(findings),
        code_hash=code_hash(source),
        summary=build_summary(findings),
    )


def format_findings(findings: list[Finding]) -> str:
    """Human-readable listing, one ``[file:line:col] Category - message`` per line."""
    return "\n".join(
        f"[{f.file_path}:{f.line}:{f.col or 0}] {f.category.value} - {f.message}"
        for f in findings
    )
