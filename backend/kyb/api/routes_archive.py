from typing import List

from fastapi import APIRouter, Depends

from ..schemas.kyb import KybJobSummaryOut
from ..services.job_store import JobStore
from .routes_kyb import get_job_store, verify_api_key

router = APIRouter(tags=["archive"])


@router.get("/archive", response_model=List[KybJobSummaryOut])
def list_jobs(
    limit: int = 50,
    offset: int = 0,
    store: JobStore = Depends(get_job_store),
    _: None = Depends(verify_api_key),
):
    """
    Protected listing endpoint for recent KYB jobs.

    - Requires the same API key protection as the KYB routes.
    - Supports basic pagination via limit/offset.
    """
    # Hard cap to avoid unbounded scans
    safe_limit = max(1, min(limit, 100))

    jobs = store.list_recent(limit=safe_limit, offset=max(offset, 0))
    return [KybJobSummaryOut.model_validate(j, from_attributes=True) for j in jobs]
