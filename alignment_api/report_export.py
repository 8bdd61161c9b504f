"""Excel export of a persisted analysis report."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from openpyxl import Workbook
from openpyxl.utils import get_column_letter


def _auto_size_columns(worksheet) -> None:
    for column_cells in worksheet.columns:
        length = max(len(str(cell.value or "")) for cell in column_cells)
        worksheet.column_dimensions[get_column_letter(column_cells[0].column)].width = min(length + 2, 80)


def export_report_to_excel(report: Dict[str, Any], excel_path: Path, curriculum_name: Optional[str] = None) -> Path:
    """Write Summary, Findings and Gap Analysis sheets for a camelCase report dict."""
    workbook = Workbook()
    summary_sheet = workbook.active
    summary_sheet.title = "Summary"

    summary_sheet.append(["Field", "Value"])
    if curriculum_name:
        summary_sheet.append(["Curriculum", curriculum_name])
    summary_sheet.append(["Last Analyzed", report.get("lastAnalyzed")])
    summary_sheet.append(["Analyzed By", report.get("analyzedBy")])
    summary_sheet.append(["Overall Alignment Score", report.get("overallAlignmentScore")])
    summary_sheet.append(["Overall Status", report.get("overallStatusText")])
    summary_sheet.append(["Analysis Complete", "Yes" if report.get("analysisComplete") else "No"])

    summary_sheet.append([])
    summary_sheet.append(["Aspect", "Score", "Max", "Summary", "Error"])
    for aspect in (report.get("aspects") or {}).values():
        summary_sheet.append([
            aspect.get("title"),
            aspect.get("partialScore"),
            aspect.get("partialMax"),
            aspect.get("summary", ""),
            aspect.get("error") or "",
        ])

    errors = report.get("errors") or []
    if errors:
        summary_sheet.append([])
        summary_sheet.append(["Errors"])
        for error in errors:
            summary_sheet.append([error])

    _auto_size_columns(summary_sheet)

    findings_sheet = workbook.create_sheet(title="Findings")
    findings_sheet.append([
        "Aspect",
        "Criterion ID",
        "Criterion",
        "Verdict",
        "Justification",
        "Alignment %",
        "Alignment Status",
        "Skills Covered",
        "Gaps",
        "Opportunities",
    ])
    for aspect in (report.get("aspects") or {}).values():
        for finding in aspect.get("findings", []):
            findings_sheet.append([
                aspect.get("title"),
                finding.get("criterionId"),
                finding.get("label"),
                finding.get("verdict"),
                finding.get("justification", ""),
                finding.get("alignmentScorePercent"),
                finding.get("alignmentStatusText", ""),
                "\n".join(finding.get("keySkillsCovered", [])),
                "\n".join(finding.get("identifiedGaps", [])),
                "\n".join(finding.get("opportunities", [])),
            ])

    _auto_size_columns(findings_sheet)

    gap_analysis = report.get("gapAnalysis") or {}
    gaps_sheet = workbook.create_sheet(title="Gap Analysis")
    gaps_sheet.append(["Summary", gap_analysis.get("summary", "")])
    gaps_sheet.append([])
    gaps_sheet.append(["Severity", "Area", "Description"])
    for gap in gap_analysis.get("identifiedGaps", []):
        gaps_sheet.append([gap.get("severity"), gap.get("area"), gap.get("description")])
    recommendations = gap_analysis.get("recommendations") or []
    if recommendations:
        gaps_sheet.append([])
        gaps_sheet.append(["Recommendations"])
        for recommendation in recommendations:
            gaps_sheet.append([recommendation])
    _auto_size_columns(gaps_sheet)
    excel_path = Path(excel_path)
    excel_path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(excel_path)
    return excel_path
