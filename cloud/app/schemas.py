from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

# Mirrors gateci.report.GateReport.to_dict()

class DefinitionStatus(BaseModel):
    id: str
    status: Literal["succeeded", "failed", "skipped"]
    critical: bool
    reason: str | None = None
    allowed_failures: int = 0

class GateStatusReport(BaseModel):
    run_id: str = Field(min_length=1)
    overall: Literal["succeeded", "failed"]
    definitions: list[DefinitionStatus]
    workflow: str = "workflow"
    triggered: bool = True
    cancelled: list[str] = Field(default_factory=list)
    cancel_timeouts: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)

    def blocking(self) -> list[str]:
        """Critical definitions that kept the gate closed."""
        return [
            d.id for d in self.definitions
            if d.critical and d.status != "succeeded"
            and not (d.status == "skipped" and d.reason in ("condition", "empty-matrix"))
        ]

class StatusAccepted(BaseModel):
    run_id: str
    created: bool
    published: bool

class StatusResponse(BaseModel):
    run_id: str
    overall: str
    reports: int
    blocking: list[str]
    report: GateStatusReport
