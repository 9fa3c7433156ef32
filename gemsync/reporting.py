"""
Reporting and export utilities.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List

import pandas as pd

from .models import SyncReport, SyncStatus


logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    "package",
    "status",
    "old_version",
    "new_version",
    "release",
    "published",
    "reasons",
    "path",
]


def report_rows(report: SyncReport) -> List[Dict]:
    rows = []
    for outcome in report.outcomes:
        rows.append({
            "package": outcome.package,
            "status": outcome.status.value,
            "old_version": outcome.old_version,
            "new_version": outcome.new_version,
            "release": outcome.release,
            "published": outcome.published,
            "reasons": "; ".join(outcome.reasons),
            "path": str(outcome.path),
        })
    return rows


def print_summary(report: SyncReport) -> None:
    logger.info("=" * 60)
    logger.info("SYNC RESULTS")
    logger.info("=" * 60)
    for outcome in report.outcomes:
        if outcome.status in (SyncStatus.UPDATED, SyncStatus.BLOCKED, SyncStatus.FAILED):
            logger.info(
                "%-40s %-9s %s -> %s",
                outcome.package, outcome.status.value, outcome.old_version, outcome.new_version,
            )
    logger.info("-" * 60)
    logger.info("Updated: %d", report.updated)
    logger.info("Unchanged: %d", report.unchanged)
    logger.info("Blocked: %d", report.blocked)
    logger.info("Skipped: %d", report.skipped)
    logger.info("Failed: %d", report.failed)
    logger.info("Out-of-date distribution packages: %d", len(report.drifts))
    logger.info("=" * 60)


def save_report_json(report: SyncReport, report_file: Path) -> Path:
    report_file.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "counts": {status.value: report.count(status) for status in SyncStatus},
        "recipes": report_rows(report),
        "drifts": [str(drift) for drift in report.drifts],
    }
    with open(report_file, 'w') as f:
        json.dump(payload, f, indent=2, default=str)
    return report_file


def export_report_csv(report: SyncReport, report_file: Path) -> Path:
    report_file.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(report_rows(report), columns=REPORT_COLUMNS)
    df.to_csv(report_file, index=False)
    return report_file
