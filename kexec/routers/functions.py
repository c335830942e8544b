from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from ..core.errors import InputValidationError
from ..core.security import get_current_user_id
from ..database import crud
from ..database.database import get_db
from ..schemas.function import FunctionCreate, FunctionCreated, FunctionDetail, FunctionInDB, InvocationResult
from ..services.pipeline import FunctionPipeline, InvokeResult, decode_log

# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/functions",
    tags=["functions"]
)


def get_pipeline(request: Request) -> FunctionPipeline:
    return request.app.state.pipeline


async def read_params(request: Request) -> str:
    """The raw request body is the invocation parameters, passed on verbatim."""
    body = await request.body()
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        raise InputValidationError("Invocation parameters must be UTF-8 text")


def _invocation_response(result: InvokeResult) -> InvocationResult:
    return InvocationResult(
        invocation_id=result.invocation_id,
        job_name=result.job_name,
        namespace=result.namespace,
        status=result.status,
        log=decode_log(result.log),
        execution_time=result.execution_time,
    )


@router.post("/", response_model=FunctionCreated, status_code=status.HTTP_201_CREATED)
async def create_function(
    function: FunctionCreate,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    pipeline: FunctionPipeline = Depends(get_pipeline),
):
    logger.info(f"Creating function {function.name} ({function.runtime}) for user {user_id}")
    result = await run_in_threadpool(
        pipeline.create_function, db, user_id, function.name, function.runtime, function.code
    )
    return FunctionCreated(
        name=result.function.name,
        runtime=result.function.runtime,
        image=result.image,
        image_id=result.image_id,
        digest=result.digest,
        created=result.created,
    )


@router.get("/", response_model=List[FunctionInDB])
def list_functions(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    functions = crud.list_functions_of_user(db, user_id)
    logger.info(f"Successfully fetched {len(functions)} functions of user {user_id}")
    return functions


@router.get("/{function_name}", response_model=FunctionDetail)
def get_function(
    function_name: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    pipeline: FunctionPipeline = Depends(get_pipeline),
):
    return pipeline.get_function(db, user_id, function_name)


@router.post("/{function_name}/invoke", response_model=InvocationResult)
async def invoke_function(
    function_name: str,
    timeout: Optional[float] = Query(None, ge=0),
    params: str = Depends(read_params),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    pipeline: FunctionPipeline = Depends(get_pipeline),
):
    result = await run_in_threadpool(pipeline.invoke_function, db, user_id, function_name, params, timeout)
    return _invocation_response(result)


@router.post("/call/{username}/{function_name}", response_model=InvocationResult)
async def call_function(
    username: str,
    function_name: str,
    params: str = Depends(read_params),
    db: Session = Depends(get_db),
    pipeline: FunctionPipeline = Depends(get_pipeline),
):
    """Programmatic call path: the owner is named in the URL instead of a token."""
    result = await run_in_threadpool(pipeline.invoke_function, db, username, function_name, params)
    return _invocation_response(result)


@router.get("/{function_name}/invocations/{invocation_id}/log")
async def get_invocation_log(
    function_name: str,
    invocation_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    pipeline: FunctionPipeline = Depends(get_pipeline),
):
    log = await run_in_threadpool(pipeline.fetch_invocation_log, user_id, function_name, invocation_id, db)
    return Response(content=log, media_type="text/plain")
