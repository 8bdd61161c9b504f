"""Tests for the cross-aspect gap analysis."""

from alignment_api.analysis_schema import Finding, IndustryFinding, Severity, Verdict
from alignment_api.evaluators import AspectResult
from alignment_api.gap_analysis import build_gap_analysis


def _admissions(*verdicts):
    ids = ["englishUnits", "mathUnits", "scienceUnits", "historyUnits", "electivesUnits"]
    return AspectResult(
        aspect="admissions",
        title="USAO Admissions Requirements",
        findings=[
            Finding(criterion_id=criterion_id, label=criterion_id, verdict=verdict)
            for criterion_id, verdict in zip(ids, verdicts)
        ],
    )


class TestBuildGapAnalysis:
    def test_admissions_gaps_rank_high_and_cite_required_units(self, benchmarks):
        result = _admissions(Verdict.MET, Verdict.GAP, Verdict.UNCLEAR)
        intro = AspectResult(
            aspect="introCourses",
            title="USAO Introductory Course Readiness",
            findings=[Finding(criterion_id="arts", label="Fine Arts", verdict=Verdict.GAP)],
        )

        analysis = build_gap_analysis([intro, result], benchmarks)

        severities = [gap.severity for gap in analysis.identified_gaps]
        assert severities == [Severity.HIGH, Severity.HIGH, Severity.MEDIUM]
        math_gap = analysis.identified_gaps[0]
        assert math_gap.criterion_id == "mathUnits"
        assert "required 3 units" in math_gap.description
        assert "Potential gaps in core unit requirements." in analysis.summary
        assert "introductory course themes" in analysis.summary

    def test_partially_met_verdicts_are_not_gaps(self, benchmarks):
        analysis = build_gap_analysis([_admissions(Verdict.PARTIALLY_MET, Verdict.MET)], benchmarks)

        assert analysis.identified_gaps == []
        assert analysis.summary == "No significant gaps identified across the evaluated benchmarks."

    def test_industry_gaps_list_missing_skills_and_recommend_an_opportunity(self, benchmarks):
        industry = AspectResult(
            aspect="industry",
            title="Regional High-Growth Industry Alignment",
            findings=[
                IndustryFinding(
                    criterion_id="retail", label="Retail Trade", verdict=Verdict.GAP,
                    alignment_score_percent=20, alignment_status_text="Limited Alignment",
                    identified_gaps=["Customer Service"], opportunities=["Add a retail management elective."],
                ),
                IndustryFinding(
                    criterion_id="health", label="Health Care", verdict=Verdict.MET,
                    alignment_score_percent=80, alignment_status_text="Strong Alignment",
                ),
            ],
        )

        analysis = build_gap_analysis([industry], benchmarks)

        assert len(analysis.identified_gaps) == 1
        gap = analysis.identified_gaps[0]
        assert gap.severity == Severity.LOW
        assert gap.description == "20% aligned (Limited Alignment). Missing: Customer Service."
        assert analysis.recommendations == ["Add a retail management elective."]

    def test_failed_aspects_contribute_nothing(self, benchmarks):
        failed = AspectResult(aspect="admissions", title="USAO Admissions Requirements", error="boom")

        analysis = build_gap_analysis([failed], benchmarks)

        assert analysis.identified_gaps == []
        assert analysis.summary.startswith("Gap analysis unavailable")

    def test_serializes_with_camel_case_keys(self, benchmarks):
        analysis = build_gap_analysis([_admissions(Verdict.GAP)], benchmarks)
        data = analysis.to_json_dict()

        assert data["identifiedGaps"][0]["severity"] == "High"
        assert data["identifiedGaps"][0]["area"].startswith("USAO Admissions Requirements:")
        assert data["recommendations"]
