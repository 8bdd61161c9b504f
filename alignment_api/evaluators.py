"""
Benchmark evaluators.

Each evaluator builds one prompt for its benchmark aspect, asks the
structured-completion client for a JSON object and maps the reply onto
findings and a partial score. Completion and mapping failures are recovered
here: the evaluator returns an empty result carrying a descriptive error.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from alignment_api.analysis_schema import (
    VERDICT_WEIGHTS,
    AspectSection,
    Finding,
    IndustryFinding,
    Verdict,
    normalize_verdict,
)
from alignment_api.benchmarks import (
    ADMISSIONS,
    INDUSTRY,
    INTRO_COURSES,
    BenchmarkAspect,
    BenchmarkSet,
    load_benchmarks,
)
from alignment_api.config import AnalysisSettings
from alignment_api.errors import CompletionError, EvaluationError, InvalidOutput
from alignment_api.structured_completion import StructuredCompletionClient

logger = logging.getLogger(__name__)

JUSTIFICATION_WORD_LIMIT = 25
NOT_ASSESSED = "Not assessed in the model response."


@dataclass
class AspectResult:
    aspect: str
    title: str
    findings: List[Finding] = field(default_factory=list)
    partial_score: float = 0.0
    partial_max: float = 0.0
    summary: str = ""
    region: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_section(self) -> AspectSection:
        return AspectSection(
            title=self.title,
            summary=self.summary,
            region=self.region,
            findings=list(self.findings),
            partial_score=round(self.partial_score, 2),
            partial_max=round(self.partial_max, 2),
            error=self.error,
        )


def _entries_by_id(payload: Dict[str, Any], key: str) -> Dict[str, Dict[str, Any]]:
    """Accept either a list of entries with ``criterionId`` or an id-keyed object."""
    raw = payload.get(key)
    entries: Dict[str, Dict[str, Any]] = {}
    if isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict):
                continue
            criterion_id = item.get("criterionId") or item.get("id")
            if criterion_id:
                entries[str(criterion_id)] = item
    elif isinstance(raw, dict):
        for criterion_id, item in raw.items():
            if isinstance(item, dict):
                entries[str(criterion_id)] = item
    else:
        raise EvaluationError(key, f"expected a list or object under '{key}', got {type(raw).__name__}")
    return entries


def _string_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


class BenchmarkEvaluator:
    """Base class; subclasses define the aspect key, prompt and mapping."""

    aspect_key: str = ""
    expected_key = "findings"

    def __init__(
        self,
        completion_client: StructuredCompletionClient,
        benchmarks: Optional[BenchmarkSet] = None,
        settings: Optional[AnalysisSettings] = None,
    ):
        self.completion_client = completion_client
        self.settings = settings or completion_client.settings
        self._benchmarks = benchmarks

    @property
    def benchmarks(self) -> BenchmarkSet:
        if self._benchmarks is None:
            self._benchmarks = load_benchmarks(self.settings.benchmarks_path)
        return self._benchmarks

    def definition(self) -> BenchmarkAspect:
        return self.benchmarks.aspect(self.aspect_key)

    async def evaluate(self, extracted_text: str, definition: Optional[BenchmarkAspect] = None) -> AspectResult:
        if definition is None:
            if self.aspect_key not in self.benchmarks.aspects:
                logger.error("Benchmark set has no '%s' aspect; skipping %s", self.aspect_key, type(self).__name__)
                return self.failure(f"benchmark aspect '{self.aspect_key}' is not defined")
            definition = self.definition()
        excerpt = extracted_text[: self.settings.max_text_chars]
        prompt = self.build_prompt(excerpt, definition)

        try:
            payload = await self.completion_client.complete(prompt, expected_key=self.expected_key)
            result = self.map_payload(payload, definition)
        except InvalidOutput as exc:
            logger.warning("%s evaluation returned unusable output: %s", definition.title, exc)
            return self._failed(definition, f"{definition.title} analysis failed: invalid model output ({exc})")
        except (CompletionError, EvaluationError) as exc:
            logger.warning("%s evaluation failed: %s", definition.title, exc)
            return self._failed(definition, f"{definition.title} analysis failed: {exc}")

        logger.info(
            "%s evaluated: %d findings, score %.1f/%.1f",
            definition.title, len(result.findings), result.partial_score, result.partial_max,
        )
        return result

    def failure(self, reason: str) -> AspectResult:
        """Empty result carrying an error; usable even when the aspect is undefined."""
        aspect = self.benchmarks.aspects.get(self.aspect_key)
        key = self.aspect_key or type(self).__name__
        title = aspect.title if aspect else key
        return AspectResult(
            aspect=key,
            title=title,
            summary="Analysis could not be completed for this aspect.",
            region=aspect.region if aspect else None,
            error=f"{title} analysis failed: {reason}",
        )

    def _failed(self, definition: BenchmarkAspect, message: str) -> AspectResult:
        return AspectResult(
            aspect=definition.key,
            title=definition.title,
            summary="Analysis could not be completed for this aspect.",
            region=definition.region,
            error=message,
        )

    def build_prompt(self, excerpt: str, definition: BenchmarkAspect) -> str:
        raise NotImplementedError

    def map_payload(self, payload: Dict[str, Any], definition: BenchmarkAspect) -> AspectResult:
        raise NotImplementedError

    # Verdict-scored aspects ---------------------------------------------------

    def _map_verdict_findings(self, payload: Dict[str, Any], definition: BenchmarkAspect) -> AspectResult:
        entries = _entries_by_id(payload, self.expected_key)
        unknown = set(entries) - {criterion.id for criterion in definition.criteria}
        if unknown:
            logger.info("Ignoring unknown criteria in %s reply: %s", definition.key, sorted(unknown))

        findings: List[Finding] = []
        score = 0.0
        for criterion in definition.criteria:
            entry = entries.get(criterion.id)
            if entry is None:
                verdict, justification = Verdict.UNCLEAR, NOT_ASSESSED
            else:
                verdict = normalize_verdict(entry.get("verdict") or entry.get("status"))
                justification = str(entry.get("justification") or "").strip()
            findings.append(
                Finding(
                    criterion_id=criterion.id,
                    label=criterion.label,
                    verdict=verdict,
                    justification=justification,
                )
            )
            score += VERDICT_WEIGHTS[verdict] * definition.weight_per_criterion

        return AspectResult(
            aspect=definition.key,
            title=definition.title,
            findings=findings,
            partial_score=score,
            partial_max=definition.weight_per_criterion * len(definition.criteria),
            summary=self._summary(payload, findings),
            region=definition.region,
        )

    @staticmethod
    def _summary(payload: Dict[str, Any], findings: List[Finding]) -> str:
        summary = payload.get("summary")
        if isinstance(summary, str) and summary.strip():
            return summary.strip()
        met = sum(1 for finding in findings if finding.verdict == Verdict.MET)
        partial = sum(1 for finding in findings if finding.verdict == Verdict.PARTIALLY_MET)
        return f"{met} of {len(findings)} criteria met, {partial} partially met."

    @staticmethod
    def _shape_instructions(example: Dict[str, Any]) -> str:
        verdicts = ", ".join(f'"{verdict.value}"' for verdict in Verdict)
        return (
            "Respond with a JSON object of exactly this shape:\n"
            f"{json.dumps(example, indent=2)}\n"
            f"Allowed verdict values: {verdicts}.\n"
            f"Keep each justification under {JUSTIFICATION_WORD_LIMIT} words. "
            "Include one entry per criterion id listed above."
        )


class AdmissionsEvaluator(BenchmarkEvaluator):
    """Institutional admissions unit requirements."""

    aspect_key = ADMISSIONS

    def build_prompt(self, excerpt, definition):
        criteria_lines = "\n".join(
            f'- {criterion.id}: {criterion.label} ({criterion.required_units} units required)'
            for criterion in definition.criteria
        )
        example = {
            "summary": "One sentence overview of admissions readiness.",
            "findings": [
                {"criterionId": definition.criteria[0].id if definition.criteria else "criterionId",
                 "verdict": "Met",
                 "justification": "Short evidence-based reason."},
            ],
        }
        total = f" (total {definition.total_units} units)" if definition.total_units else ""
        return (
            f"Evaluate whether the curriculum below prepares students for the {definition.title}{total}.\n"
            f"For each requirement decide if the curriculum provides the required units.\n\n"
            f"Requirements:\n{criteria_lines}\n\n"
            f"{self._shape_instructions(example)}\n\n"
            f"Curriculum excerpt:\n\"\"\"\n{excerpt}\n\"\"\""
        )

    def map_payload(self, payload, definition):
        return self._map_verdict_findings(payload, definition)


class IntroCourseEvaluator(BenchmarkEvaluator):
    """Readiness for introductory college courses by subject area."""

    aspect_key = INTRO_COURSES

    def build_prompt(self, excerpt, definition):
        criteria_lines = "\n".join(
            f"- {criterion.id}: {criterion.label} (themes: {', '.join(criterion.themes)})"
            for criterion in definition.criteria
        )
        example = {
            "summary": "One sentence overview of introductory course readiness.",
            "findings": [
                {"criterionId": definition.criteria[0].id if definition.criteria else "criterionId",
                 "verdict": "Partially Met",
                 "justification": "Short evidence-based reason."},
            ],
        }
        return (
            f"Assess how well the curriculum below prepares students for {definition.title}.\n"
            "For each subject area judge whether its themes are covered.\n\n"
            f"Subject areas:\n{criteria_lines}\n\n"
            f"{self._shape_instructions(example)}\n\n"
            f"Curriculum excerpt:\n\"\"\"\n{excerpt}\n\"\"\""
        )

    def map_payload(self, payload, definition):
        return self._map_verdict_findings(payload, definition)


def industry_status_text(percent: Optional[int]) -> str:
    if percent is None:
        return "Not Assessed"
    if percent >= 75:
        return "Strong Alignment"
    if percent >= 50:
        return "Moderate Alignment"
    if percent >= 30:
        return "Some Alignment"
    return "Limited Alignment"


def default_opportunities(industry: str) -> List[str]:
    return [
        f"Explore partnerships with local {industry} employers.",
        "Integrate industry-specific project options.",
    ]


class IndustryEvaluator(BenchmarkEvaluator):
    """Alignment with regional high-growth industries."""

    aspect_key = INDUSTRY
    max_points = 3

    def build_prompt(self, excerpt, definition):
        criteria_lines = "\n".join(
            f"- {criterion.id}: {criterion.label}; keywords: {', '.join(criterion.keywords)}; "
            f"key skills: {', '.join(criterion.skills)}"
            for criterion in definition.criteria
        )
        example = {
            "summary": "One sentence overview of regional industry alignment.",
            "findings": [
                {"criterionId": definition.criteria[0].id if definition.criteria else "criterionId",
                 "alignmentScorePercent": 40,
                 "keySkillsCovered": ["Skill from the list"],
                 "identifiedGaps": ["Missing skill or topic"],
                 "opportunities": ["Concrete partnership, course or project idea"],
                 "justification": "Short evidence-based reason."},
            ],
        }
        region = definition.region or "the service region"
        return (
            f"Assess how well the curriculum below prepares students for high-growth industries in {region}.\n"
            "For each industry estimate an alignment percentage from 0 to 100, list covered skills and gaps, "
            "and suggest up to two opportunities to strengthen the pathway.\n\n"
            f"Industries:\n{criteria_lines}\n\n"
            "Respond with a JSON object of exactly this shape:\n"
            f"{json.dumps(example, indent=2)}\n"
            f"Keep each justification under {JUSTIFICATION_WORD_LIMIT} words. "
            "Include one entry per industry id listed above.\n\n"
            f"Curriculum excerpt:\n\"\"\"\n{excerpt}\n\"\"\""
        )

    @staticmethod
    def _percent(value: Any) -> Optional[int]:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(number):
            return None
        return max(0, min(100, int(round(number))))

    @staticmethod
    def _verdict_for_percent(percent: int) -> Verdict:
        if percent >= 66:
            return Verdict.MET
        if percent >= 33:
            return Verdict.PARTIALLY_MET
        return Verdict.GAP

    def map_payload(self, payload, definition):
        entries = _entries_by_id(payload, self.expected_key)
        weight = definition.weight_per_criterion or self.max_points

        findings: List[Finding] = []
        score = 0.0
        for criterion in definition.criteria:
            entry = entries.get(criterion.id)
            percent = self._percent(entry.get("alignmentScorePercent")) if entry else None
            if entry is None or percent is None:
                findings.append(
                    IndustryFinding(
                        criterion_id=criterion.id,
                        label=criterion.label,
                        verdict=Verdict.UNCLEAR,
                        justification=NOT_ASSESSED if entry is None else str(entry.get("justification") or NOT_ASSESSED),
                        identified_gaps=list(criterion.skills),
                        opportunities=default_opportunities(criterion.label),
                    )
                )
                continue

            verdict = normalize_verdict(entry["verdict"]) if entry.get("verdict") else self._verdict_for_percent(percent)
            findings.append(
                IndustryFinding(
                    criterion_id=criterion.id,
                    label=criterion.label,
                    verdict=verdict,
                    justification=str(entry.get("justification") or "").strip(),
                    alignment_score_percent=percent,
                    alignment_status_text=industry_status_text(percent),
                    key_skills_covered=_string_list(entry.get("keySkillsCovered")),
                    identified_gaps=_string_list(entry.get("identifiedGaps")),
                    opportunities=_string_list(entry.get("opportunities")) or default_opportunities(criterion.label),
                )
            )
            score += min(weight, percent // 33)

        return AspectResult(
            aspect=definition.key,
            title=definition.title,
            findings=findings,
            partial_score=float(score),
            partial_max=float(weight * len(definition.criteria)),
            summary=self._summary(payload, findings),
            region=definition.region,
        )


def default_evaluators(
    completion_client: StructuredCompletionClient,
    benchmarks: Optional[BenchmarkSet] = None,
    settings: Optional[AnalysisSettings] = None,
) -> List[BenchmarkEvaluator]:
    return [
        AdmissionsEvaluator(completion_client, benchmarks, settings),
        IntroCourseEvaluator(completion_client, benchmarks, settings),
        IndustryEvaluator(completion_client, benchmarks, settings),
    ]
