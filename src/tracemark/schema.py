from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

RECORD_SCHEMA_VERSION = 1


class ComplianceCountsDTO(BaseModel):
    full: int = 0
    untested: int = 0
    missing: int = 0
    orphan: int = 0


class GapRecordDTO(BaseModel):
    spec_id: str
    requirement_id: str
    severity: Literal["critical", "warning", "info"]
    status: Literal["full", "untested", "missing", "orphan"]
    description: str
    action: str = ""
    display_status: Optional[str] = None
    source: Optional[str] = None


class MarkerRecordDTO(BaseModel):
    id: str
    file: str
    line: int
    kind: Literal["implementation", "test"]


class HallucinationRecordDTO(MarkerRecordDTO):
    suggestions: List[str] = []


class PlaceholderSummaryDTO(BaseModel):
    count: int = 0
    occurrences: List[MarkerRecordDTO] = []


class FileErrorDTO(BaseModel):
    path: str
    reason: str
    error: Literal["FileReadError"] = "FileReadError"


class ComplianceRecordDTO(BaseModel):
    schema_version: int = RECORD_SCHEMA_VERSION
    scope: str
    timestamp: str
    specs_checked: int
    requirements_total: int
    compliance: ComplianceCountsDTO
    compliance_percentage: float
    gaps: List[GapRecordDTO] = []
    recommendation: str
    placeholders: PlaceholderSummaryDTO = Field(default_factory=PlaceholderSummaryDTO)
    hallucinations: List[HallucinationRecordDTO] = []
    file_errors: List[FileErrorDTO] = []
    files_scanned: int = 0
    spec_path: Optional[str] = None
    incremental: bool = False
    mode: Literal["error", "warning"] = "error"
    outcome: Literal["passed", "warnings", "failed", "blocked"]
    exit_code: int
