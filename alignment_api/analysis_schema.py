"""Shared schemas for curriculum records, findings and analysis reports."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny
from pydantic.alias_generators import to_camel


class AnalysisStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.COMPLETED, AnalysisStatus.FAILED)


class Verdict(str, Enum):
    MET = "Met"
    PARTIALLY_MET = "Partially Met"
    GAP = "Gap"
    UNCLEAR = "Unclear"


VERDICT_WEIGHTS = {
    Verdict.MET: 1.0,
    Verdict.PARTIALLY_MET: 0.5,
    Verdict.GAP: 0.0,
    Verdict.UNCLEAR: 0.0,
}

_VERDICT_ALIASES = {
    "met": Verdict.MET,
    "likely met": Verdict.MET,
    "fully met": Verdict.MET,
    "partially met": Verdict.PARTIALLY_MET,
    "partial": Verdict.PARTIALLY_MET,
    "partially": Verdict.PARTIALLY_MET,
    "gap": Verdict.GAP,
    "not met": Verdict.GAP,
    "unclear": Verdict.UNCLEAR,
}


def normalize_verdict(value: Any) -> Verdict:
    """Map a free-text verdict from the model onto the closed verdict set."""
    if isinstance(value, Verdict):
        return value
    if not isinstance(value, str):
        return Verdict.UNCLEAR
    key = " ".join(value.replace("_", " ").replace("-", " ").split()).lower()
    return _VERDICT_ALIASES.get(key, Verdict.UNCLEAR)


class CamelModel(BaseModel):
    """Base model that serialises with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Finding(CamelModel):
    criterion_id: str
    label: str
    verdict: Verdict
    justification: str = ""


class IndustryFinding(Finding):
    alignment_score_percent: int = 0
    alignment_status_text: str = "Not Assessed"
    key_skills_covered: List[str] = Field(default_factory=list)
    identified_gaps: List[str] = Field(default_factory=list)
    opportunities: List[str] = Field(default_factory=list)


class AspectSection(CamelModel):
    title: str
    summary: str = ""
    region: Optional[str] = None
    findings: List[SerializeAsAny[Finding]] = Field(default_factory=list)
    partial_score: float = 0.0
    partial_max: float = 0.0
    error: Optional[str] = None


class Severity(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class IdentifiedGap(CamelModel):
    aspect: str
    criterion_id: str
    area: str
    description: str
    severity: Severity


class GapAnalysis(CamelModel):
    """Cross-aspect view of what the curriculum is missing, most severe first."""

    summary: str = ""
    identified_gaps: List[IdentifiedGap] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class AnalysisReport(CamelModel):
    last_analyzed: datetime
    analyzed_by: str
    overall_alignment_score: int = 0
    overall_status_text: str = "Analysis Pending"
    aspects: Dict[str, AspectSection] = Field(default_factory=dict)
    gap_analysis: GapAnalysis = Field(default_factory=GapAnalysis)
    errors: List[str] = Field(default_factory=list)
    analysis_complete: bool = False
    extracted_text_snippet: str = ""


class CurriculumRecord(CamelModel):
    id: str
    name: str
    school_tag: Optional[str] = None
    original_file_name: Optional[str] = None
    storage_address: Optional[str] = None
    analysis_status: AnalysisStatus = AnalysisStatus.NOT_STARTED
    analysis_error: Optional[str] = None
    analysis_results: Optional[Dict[str, Any]] = None
    uploaded_at: datetime
    updated_at: datetime
    last_analysis_triggered_at: Optional[datetime] = None
    last_analysis_completed_at: Optional[datetime] = None

    def status_payload(self) -> Dict[str, Any]:
        """Fields answered to status polls; results default to an empty object."""
        data = self.to_json_dict()
        return {
            "id": data["id"],
            "name": data["name"],
            "analysisStatus": data["analysisStatus"],
            "analysisError": data["analysisError"],
            "analysisResults": data["analysisResults"] or {},
            "lastAnalysisTriggeredAt": data["lastAnalysisTriggeredAt"],
            "lastAnalysisCompletedAt": data["lastAnalysisCompletedAt"],
            "updatedAt": data["updatedAt"],
        }


class CurriculumCreate(CamelModel):
    name: str
    original_file_name: str
    storage_address: str
    school_tag: Optional[str] = None


class ChatTurn(CamelModel):
    """One earlier chat message; only "user" and "model" turns reach the model."""

    role: str
    text: str


class ChatRequest(CamelModel):
    message: str = ""
    history: List[ChatTurn] = Field(default_factory=list)
    curriculum_context: str = ""
