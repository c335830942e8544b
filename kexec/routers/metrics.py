from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from ..core.security import get_current_user_id
from ..database.database import get_db
from ..metrics.collector import MetricsCollector
from .functions import FunctionPipeline, get_pipeline
import logging

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/metrics",
    tags=["metrics"]
)

@router.get("/")
def get_all_metrics(
    days: int = Query(30, ge=1, description="Number of days to include in metrics"),
    db: Session = Depends(get_db)
):
    """
    Get system-wide execution metrics
    """
    return MetricsCollector(db).get_metrics(days=days)

@router.get("/functions/{function_name}")
def get_function_metrics(
    function_name: str,
    days: int = Query(30, ge=1, description="Number of days to include in metrics"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    pipeline: FunctionPipeline = Depends(get_pipeline),
):
    """
    Get execution metrics for one of the caller's functions
    """
    function = pipeline.get_function(db, user_id, function_name)
    metrics = MetricsCollector(db).get_metrics(function_id=function.id, days=days)
    metrics["function_name"] = function.name
    return metrics
