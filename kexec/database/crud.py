from typing import List, Optional, Tuple
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from ..models.function import Function, User
from ..models.execution import FunctionExecution

logger = logging.getLogger(__name__)


def get_user(db: Session, user_name: str) -> Optional[User]:
    return db.query(User).filter(User.name == user_name).first()


def put_user_if_not_exists(db: Session, user_name: str) -> Tuple[User, bool]:
    """
    Insert the user unless already present.

    Returns the user row and whether it was created by this call. A
    concurrent insert of the same name is resolved by re-reading.
    """
    user = get_user(db, user_name)
    if user is not None:
        return user, False

    user = User(name=user_name)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"User {user_name} inserted concurrently, reusing existing row")
        return get_user(db, user_name), False
    db.refresh(user)
    logger.info(f"Successfully put user into DB, uid = {user.id}")
    return user, True


def _overwrite_function(function: Function, content: str, runtime: str, image: str):
    function.content = content
    function.runtime = runtime
    function.image = image
    function.updated_at = func.now()


def put_function(db: Session, user: User, name: str, content: str, runtime: str, image: str) -> Function:
    """
    Insert the function or overwrite the existing one of the same owner and name.

    When another request inserts the same function between the lookup and
    the commit, the unique constraint rejects this insert; the row is then
    re-read and overwritten so the last writer wins.
    """
    user_name = user.name
    function = get_function(db, user_name, name)
    if function is None:
        function = Function(user_id=user.id, name=name, content=content, runtime=runtime, image=image)
        db.add(function)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Function {name} of {user_name} inserted concurrently, overwriting existing row")
            function = get_function(db, user_name, name)
            if function is None:
                raise
            _overwrite_function(function, content, runtime, image)
            db.commit()
    else:
        _overwrite_function(function, content, runtime, image)
        db.commit()
    db.refresh(function)
    return function


def get_function(db: Session, user_name: str, name: str) -> Optional[Function]:
    return (
        db.query(Function)
        .join(User, Function.user_id == User.id)
        .filter(User.name == user_name, Function.name == name)
        .first()
    )


def list_functions_of_user(db: Session, user_name: str) -> List[Function]:
    return (
        db.query(Function)
        .join(User, Function.user_id == User.id)
        .filter(User.name == user_name)
        .order_by(Function.name)
        .all()
    )


def record_execution(
    db: Session,
    function: Function,
    invocation_id: str,
    job_name: str,
    namespace: str,
    status: str,
    log: Optional[str] = None,
    error: Optional[str] = None,
    execution_time: Optional[float] = None,
) -> FunctionExecution:
    execution = FunctionExecution(
        function_id=function.id,
        invocation_id=invocation_id,
        job_name=job_name,
        namespace=namespace,
        status=status,
        log=log,
        error=error,
        execution_time=execution_time,
    )
    db.add(execution)
    db.commit()
    db.refresh(execution)
    return execution


def get_execution(db: Session, invocation_id: str) -> Optional[FunctionExecution]:
    return db.query(FunctionExecution).filter(FunctionExecution.invocation_id == invocation_id).first()
