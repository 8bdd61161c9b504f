"""
Cross-aspect gap analysis.

Collects the criteria an analysis judged as Gap or Unclear, plus industries the
curriculum does not yet fully serve, into one severity-ranked list with
recommendations. Admissions gaps rank High, introductory-course gaps Medium
and industry gaps Low.
"""

import logging
from typing import List, Optional

from alignment_api.analysis_schema import (
    Finding,
    GapAnalysis,
    IdentifiedGap,
    IndustryFinding,
    Severity,
    Verdict,
)
from alignment_api.benchmarks import ADMISSIONS, INDUSTRY, INTRO_COURSES, BenchmarkCriterion, BenchmarkSet
from alignment_api.evaluators import AspectResult

logger = logging.getLogger(__name__)

SEVERITY_BY_ASPECT = {
    ADMISSIONS: Severity.HIGH,
    INTRO_COURSES: Severity.MEDIUM,
    INDUSTRY: Severity.LOW,
}
GAP_VERDICTS = (Verdict.GAP, Verdict.UNCLEAR)
_SEVERITY_RANK = {Severity.HIGH: 0, Severity.MEDIUM: 1, Severity.LOW: 2}


def _admissions_gap(finding: Finding, criterion: Optional[BenchmarkCriterion]):
    units = criterion.required_units if criterion else None
    if units:
        description = f"Curriculum does not clearly indicate coverage of the required {units} units."
        recommendation = f"Document or add coursework providing {units} units of {finding.label}."
    else:
        description = "Curriculum does not clearly indicate coverage of this requirement."
        recommendation = f"Document or add coursework covering {finding.label}."
    return description, recommendation


def _intro_gap(finding: Finding, criterion: Optional[BenchmarkCriterion]):
    themes = ", ".join(criterion.themes) if criterion and criterion.themes else finding.label.lower()
    description = f"Curriculum may not explicitly prepare for introductory college-level focus on {themes}."
    recommendation = f"Strengthen preparation in {finding.label}: {themes}."
    return description, recommendation


def _industry_gap(finding: IndustryFinding):
    if finding.verdict == Verdict.UNCLEAR:
        description = "Alignment could not be assessed."
    else:
        description = f"{finding.alignment_score_percent}% aligned ({finding.alignment_status_text})."
    if finding.identified_gaps:
        description += " Missing: " + ", ".join(finding.identified_gaps) + "."
    recommendation = finding.opportunities[0] if finding.opportunities else None
    return description, recommendation


def _summary(gaps: List[IdentifiedGap], evaluated: int) -> str:
    if evaluated == 0:
        return "Gap analysis unavailable: no benchmark aspect was evaluated."
    if not gaps:
        return "No significant gaps identified across the evaluated benchmarks."

    counts = {severity: sum(1 for gap in gaps if gap.severity == severity) for severity in Severity}
    parts = [
        f"{len(gaps)} gap(s) identified ({counts[Severity.HIGH]} high, "
        f"{counts[Severity.MEDIUM]} medium, {counts[Severity.LOW]} low severity)."
    ]
    aspects = {gap.aspect for gap in gaps}
    if ADMISSIONS in aspects:
        parts.append("Potential gaps in core unit requirements.")
    if INTRO_COURSES in aspects:
        parts.append("Gaps also identified in preparedness for some introductory course themes.")
    return " ".join(parts)


def build_gap_analysis(results: List[AspectResult], benchmarks: BenchmarkSet) -> GapAnalysis:
    """Derive the gap analysis from evaluated aspects; failed aspects contribute nothing."""
    gaps: List[IdentifiedGap] = []
    recommendations: List[str] = []
    evaluated = 0

    for result in results:
        if result.error:
            continue
        evaluated += 1
        aspect = benchmarks.aspects.get(result.aspect)
        severity = SEVERITY_BY_ASPECT.get(result.aspect, Severity.MEDIUM)

        for finding in result.findings:
            criterion = aspect.criterion(finding.criterion_id) if aspect else None
            if isinstance(finding, IndustryFinding):
                if finding.verdict == Verdict.MET:
                    continue
                description, recommendation = _industry_gap(finding)
            elif finding.verdict in GAP_VERDICTS:
                if result.aspect == ADMISSIONS:
                    description, recommendation = _admissions_gap(finding, criterion)
                else:
                    description, recommendation = _intro_gap(finding, criterion)
            else:
                continue

            gaps.append(
                IdentifiedGap(
                    aspect=result.aspect,
                    criterion_id=finding.criterion_id,
                    area=f"{result.title}: {finding.label}",
                    description=description,
                    severity=severity,
                )
            )
            if recommendation and recommendation not in recommendations:
                recommendations.append(recommendation)

    gaps.sort(key=lambda gap: _SEVERITY_RANK[gap.severity])
    logger.info("Gap analysis: %d gaps across %d evaluated aspects", len(gaps), evaluated)
    return GapAnalysis(
        summary=_summary(gaps, evaluated),
        identified_gaps=gaps,
        recommendations=recommendations,
    )
