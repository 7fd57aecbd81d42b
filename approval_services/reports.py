"""Report catalog protocol: report metadata shown next to a workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable
from uuid import UUID


@dataclass(frozen=True)
class ReportMetadata:
    report_id: UUID
    name: str
    description: str | None = None
    file_ids: tuple[UUID, ...] = ()


@runtime_checkable
class ReportCatalog(Protocol):
    def get_report(self, report_id: UUID) -> ReportMetadata | None: ...


@dataclass
class StaticReportCatalog:
    """In-memory catalog for development and tests."""

    reports: dict[UUID, ReportMetadata] = field(default_factory=dict)

    def add(self, report: ReportMetadata) -> None:
        self.reports[report.report_id] = report

    def get_report(self, report_id: UUID) -> ReportMetadata | None:
        return self.reports.get(report_id)
