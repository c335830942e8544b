import logging
from typing import Dict, Any, Optional
from datetime import datetime, timedelta, timezone
from sqlalchemy.orm import Session
from sqlalchemy import func, desc
from sqlalchemy.exc import SQLAlchemyError
from ..database import crud
from ..models.function import Function, User
from ..models.execution import FunctionExecution

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED = "failed"
TIMEOUT = "timeout"
NOT_FOUND = "not_found"
ERROR = "error"


class MetricsCollector:
    def __init__(self, db: Session):
        self.db = db

    def record_execution(self, function: Function, invocation_id: str, job_name: str, namespace: str,
                         status: str, log: Optional[str] = None, error: Optional[str] = None,
                         execution_time: Optional[float] = None) -> Optional[FunctionExecution]:
        """Store the execution record; a storage failure never fails the invocation."""
        try:
            execution = crud.record_execution(
                self.db,
                function,
                invocation_id=invocation_id,
                job_name=job_name,
                namespace=namespace,
                status=status,
                log=log,
                error=error,
                execution_time=execution_time,
            )
            logger.info(f"Stored execution {invocation_id} of function {function.name} ({status})")
            return execution
        except SQLAlchemyError as e:
            logger.error(f"Failed to store execution {invocation_id}: {e}")
            self.db.rollback()
            return None

    def get_metrics(self, function_id: Optional[int] = None, days: int = 30) -> Dict[str, Any]:
        """Execution summary over the last ``days`` days, optionally for one function."""
        metrics = {}

        end_date = datetime.now(timezone.utc)
        start_date = end_date - timedelta(days=days)

        base_query = self.db.query(FunctionExecution).filter(FunctionExecution.created_at >= start_date)
        if function_id:
            base_query = base_query.filter(FunctionExecution.function_id == function_id)

        metrics["total_executions"] = base_query.count()
        metrics["successful_executions"] = base_query.filter(FunctionExecution.status == SUCCEEDED).count()
        metrics["failed_executions"] = base_query.filter(FunctionExecution.status != SUCCEEDED).count()
        metrics["timed_out_executions"] = base_query.filter(FunctionExecution.status == TIMEOUT).count()

        if not function_id:
            metrics["total_functions"] = self.db.query(func.count(Function.id)).scalar() or 0
            metrics["total_users"] = self.db.query(func.count(User.id)).scalar() or 0

        avg_time_result = base_query.with_entities(func.avg(FunctionExecution.execution_time)).scalar()
        metrics["avg_execution_time"] = float(avg_time_result) if avg_time_result else 0

        # Function performance (execution time by function)
        if not function_id:
            function_performance = []
            top_functions = self.db.query(
                FunctionExecution.function_id,
                func.count(FunctionExecution.id).label('count'),
                func.avg(FunctionExecution.execution_time).label('avg_time'),
            ).filter(
                FunctionExecution.created_at >= start_date
            ).group_by(
                FunctionExecution.function_id
            ).order_by(
                desc('count')
            ).limit(10).all()

            for func_id, count, avg_time in top_functions:
                function = self.db.get(Function, func_id)
                if function:
                    function_performance.append({
                        "function_id": func_id,
                        "function_name": function.name,
                        "owner": function.owner.name,
                        "execution_time": float(avg_time or 0),
                        "execution_count": count
                    })
            metrics["function_performance"] = function_performance

        recent_executions = []
        for execution in base_query.order_by(FunctionExecution.created_at.desc()).limit(10).all():
            recent_executions.append({
                "invocation_id": execution.invocation_id,
                "function_name": execution.function.name,
                "timestamp": execution.created_at.isoformat() if execution.created_at else None,
                "execution_time": execution.execution_time,
                "status": execution.status,
            })
        metrics["recent_executions"] = recent_executions

        # Executions per day; func.date works on both SQLite and PostgreSQL
        day = func.date(FunctionExecution.created_at)
        daily_counts = self.db.query(
            day.label('day'),
            func.count(FunctionExecution.id).label('count')
        ).filter(FunctionExecution.created_at >= start_date)
        if function_id:
            daily_counts = daily_counts.filter(FunctionExecution.function_id == function_id)
        daily_counts = daily_counts.group_by(day).order_by(day).all()

        metrics["time_series"] = [
            {"date": str(d)[:10], "executions": count} for d, count in daily_counts
        ]
        return metrics
