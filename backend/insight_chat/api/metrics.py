"""
Metrics endpoint for performance monitoring.
"""
from fastapi import APIRouter, Depends
from insight_chat.api.routes import get_registry
from insight_chat.core.performance import PerformanceMonitor
from insight_chat.services.session import SessionRegistry

router = APIRouter()


@router.get("/metrics")
async def get_metrics(registry: SessionRegistry = Depends(get_registry)):
    """
    Get performance metrics and live session statistics.

    Covers profiling, completion attempts, normalization, whole turns and
    request durations.
    """
    return {
        'performance': PerformanceMonitor.get_all_metrics(),
        'sessions': registry.stats()
    }
