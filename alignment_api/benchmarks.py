"""Benchmark definitions loaded once from ``benchmarks.json``."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_BENCHMARKS_PATH = Path(__file__).resolve().parent / "benchmarks.json"

ADMISSIONS = "admissions"
INTRO_COURSES = "introCourses"
INDUSTRY = "industry"


@dataclass(frozen=True)
class BenchmarkCriterion:
    id: str
    label: str
    required_units: Optional[int] = None
    themes: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    skills: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class BenchmarkAspect:
    key: str
    title: str
    criteria: List[BenchmarkCriterion]
    description: str = ""
    region: Optional[str] = None
    total_units: Optional[int] = None
    weight_per_criterion: float = 1.0

    def criterion(self, criterion_id: str) -> Optional[BenchmarkCriterion]:
        for criterion in self.criteria:
            if criterion.id == criterion_id:
                return criterion
        return None


@dataclass(frozen=True)
class BenchmarkSet:
    version: str
    aspects: Dict[str, BenchmarkAspect]

    def aspect(self, key: str) -> BenchmarkAspect:
        try:
            return self.aspects[key]
        except KeyError:
            raise KeyError(f"Benchmark aspect '{key}' is not defined") from None


def _parse_aspect(key: str, raw: Dict) -> BenchmarkAspect:
    criteria: List[BenchmarkCriterion] = []
    for item in raw.get("criteria", []):
        criterion_id = str(item.get("id") or "").strip()
        label = str(item.get("label") or "").strip()
        if not criterion_id or not label:
            logger.warning("Skipping malformed benchmark criterion in '%s': %s", key, item)
            continue
        criteria.append(
            BenchmarkCriterion(
                id=criterion_id,
                label=label,
                required_units=item.get("requiredUnits"),
                themes=list(item.get("themes", [])),
                keywords=list(item.get("keywords", [])),
                skills=list(item.get("skills", [])),
            )
        )

    return BenchmarkAspect(
        key=key,
        title=raw.get("title", key),
        description=raw.get("description", ""),
        region=raw.get("region"),
        total_units=raw.get("totalUnits"),
        weight_per_criterion=float(raw.get("weightPerCriterion", 1.0)),
        criteria=criteria,
    )


@lru_cache(maxsize=None)
def load_benchmarks(path: Optional[str] = None) -> BenchmarkSet:
    """
    Load and cache the benchmark set.

    ``path`` falls back to ``BENCHMARKS_PATH`` and then to the packaged file.
    The result is shared read-only by every run in the process.
    """
    resolved = Path(path or os.getenv("BENCHMARKS_PATH") or DEFAULT_BENCHMARKS_PATH)
    data = json.loads(resolved.read_text(encoding="utf-8"))
    aspects = {key: _parse_aspect(key, raw) for key, raw in data.get("aspects", {}).items()}
    logger.info("Loaded %d benchmark aspects from %s", len(aspects), resolved)
    return BenchmarkSet(version=str(data.get("version", "unversioned")), aspects=aspects)
