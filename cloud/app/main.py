from __future__ import annotations

from fastapi import FastAPI, HTTPException

from .db import SessionLocal, create_tables
from .models import GateStatus
from .redisq import publish_status
from .schemas import GateStatusReport, StatusAccepted, StatusResponse

app = FastAPI(title="gateci Gate Status Receiver")

# -------------------- Startup --------------------

@app.on_event("startup")
async def startup() -> None:
    await create_tables()

# -------------------- Endpoints --------------------

@app.post("/statuses", response_model=StatusAccepted)
async def receive_status(report: GateStatusReport):
    """
    Accept a run's gate status. Re-sending the same report is a no-op;
    a different report for an already-reported run is a conflict.
    """
    payload = report.model_dump(mode="json")
    created = False

    async with SessionLocal() as s:
        async with s.begin():
            existing = await s.get(GateStatus, report.run_id)
            if existing:
                if existing.payload_json != payload:
                    raise HTTPException(
                        status_code=409,
                        detail=f"Run {report.run_id} was already reported as {existing.overall}",
                    )
                existing.reports += 1
            else:
                s.add(GateStatus(
                    run_id=report.run_id,
                    workflow=report.workflow,
                    overall=report.overall,
                    ref=report.context.get("ref"),
                    payload_json=payload,
                ))
                created = True

    # push to Redis after DB commit; NX-guarded so retries never double-queue
    published = await publish_status(report.run_id)

    return StatusAccepted(run_id=report.run_id, created=created, published=published)

@app.get("/statuses/{run_id}", response_model=StatusResponse)
async def get_status(run_id: str):
    """Gate status for the merge-queue bot or the triggering system."""
    async with SessionLocal() as s:
        row = await s.get(GateStatus, run_id)
        if not row:
            raise HTTPException(status_code=404, detail="Run not reported")

        report = GateStatusReport.model_validate(row.payload_json)
        return StatusResponse(
            run_id=row.run_id,
            overall=row.overall,
            reports=row.reports,
            blocking=report.blocking(),
            report=report,
        )
