"""/v1/queries - list, describe and execute catalog queries"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request

from lending_insights.api.v1.schemas import (
    ExecuteRequest,
    ExecuteResponse,
    QueryDescriptionResponse,
    QueryListResponse,
)
from lending_insights.api.dependencies import get_executor, get_request_id
from lending_insights.domain.exceptions import ExecutionError, NotFoundError, ParameterError
from lending_insights.executor import Executor

router = APIRouter()


@router.get("/queries", response_model=QueryListResponse)
def list_queries(executor: Executor = Depends(get_executor)):
    """Names of every registered query, sorted"""
    return QueryListResponse(queries=sorted(executor.list_queries()))


@router.get("/queries/{name}", response_model=QueryDescriptionResponse)
def describe_query(name: str, executor: Executor = Depends(get_executor)):
    """Output columns and parameter specs of one query"""
    try:
        definition = executor.describe_query(name)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return QueryDescriptionResponse.from_definition(definition)


@router.post("/queries/{name}/execute", response_model=ExecuteResponse)
def execute_query(
    name: str,
    request: Request,
    request_body: Optional[ExecuteRequest] = None,
    executor: Executor = Depends(get_executor),
):
    """
    Run a query with the given parameters.

    Errors:
        404: unknown query
        422: parameter missing or outside its domain
        500: backing store or data-quality failure
    """
    request_id = get_request_id(request)

    try:
        result = executor.execute(name, request_body.params if request_body else None)
        rows = result.all()

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except ParameterError as e:
        logging.warning(f"Parameter error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=422, detail=str(e))

    except ExecutionError as e:
        logging.error(f"Execution error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=str(e))

    return ExecuteResponse(query=name, columns=result.columns, rows=rows, row_count=len(rows))
