from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class FunctionBase(BaseModel):
    name: str
    runtime: str

class FunctionCreate(FunctionBase):
    code: str

class FunctionInDB(FunctionBase):
    image: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class FunctionDetail(FunctionInDB):
    content: str

class FunctionCreated(BaseModel):
    name: str
    runtime: str
    image: str
    image_id: Optional[str] = None
    digest: Optional[str] = None
    created: bool

class InvocationResult(BaseModel):
    invocation_id: str
    job_name: str
    namespace: str
    status: str
    log: str
    execution_time: Optional[float] = None
