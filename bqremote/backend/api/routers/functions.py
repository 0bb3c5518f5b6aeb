from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from bqremote.backend.services.registry import FunctionRegistry

from .remote_functions import get_registry

router = APIRouter()


class FunctionResponse(BaseModel):
    name: str
    arg_types: List[str]
    return_type: str
    variadic: bool = False
    signature: str
    description: Optional[str] = None


class FunctionListResponse(BaseModel):
    total: int
    functions: List[FunctionResponse]


@router.get("/", response_model=FunctionListResponse)
def list_functions(registry: FunctionRegistry = Depends(get_registry)):
    functions = [FunctionResponse(**item) for item in registry.describe()]
    return FunctionListResponse(total=len(functions), functions=functions)


@router.get("/{function_name}", response_model=FunctionResponse)
def get_function(function_name: str, registry: FunctionRegistry = Depends(get_registry)):
    for item in registry.describe():
        if item["name"] == function_name:
            return FunctionResponse(**item)
    raise HTTPException(status_code=404, detail="関数が見つかりません。")
