"""Audit request and response schemas."""

from pydantic import BaseModel, ConfigDict, Field

from auditlens.analyzers.base import Finding


class AuditRequest(BaseModel):
    """Schema for submitting one source file."""

    model_config = ConfigDict(populate_by_name=True)

    language: str = Field(..., min_length=1)
    source: str
    file_name: str = Field("upload", alias="fileName")


class FindingResponse(BaseModel):
    """One finding, in the wire shape shared with the ledger collaborator."""

    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath")
    line: int
    col: int | None = None
    category: str
    message: str
    suggestion: str | None = None

    @classmethod
    def from_finding(cls, finding: Finding) -> "FindingResponse":
        return cls.model_validate(finding.to_dict())


class AuditResponse(BaseModel):
    """Audit response schema."""

    model_config = ConfigDict(populate_by_name=True)

    findings: list[FindingResponse]
    code_hash: str = Field(alias="codeHash")
    summary: str


class LanguageListResponse(BaseModel):
    """Supported language tags."""

    languages: list[str]
