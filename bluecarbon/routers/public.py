from fastapi import APIRouter

from bluecarbon.services import stats as stats_service

router = APIRouter()


@router.get("/stats")
async def public_stats():
    """Registry totals and approved projects for the public dashboard."""
    return await stats_service.public_stats()
