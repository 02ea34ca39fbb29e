"""Generic REST Routes.

Select, insert, update and delete on any table, filtered through the
caller's access policy. Visibility failures look like empty results
or missing records.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Body, Depends, Header, Request, Response

from pmsy.access.context import UserContext
from pmsy.api.dependencies import check_rate_limit, get_rest_service
from pmsy.api.models import DeleteResponse
from pmsy.rest.service import RestService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["REST"])

TOTAL_COUNT_HEADER = "X-Total-Count"

RowBody = Union[Dict[str, Any], List[Dict[str, Any]]]


def _wants_count(prefer: Optional[str]) -> bool:
    if not prefer:
        return False
    return any(part.strip().lower() == "count=exact" for part in prefer.split(","))


@router.get("/{table}")
async def list_rows(
    table: str,
    request: Request,
    response: Response,
    prefer: Optional[str] = Header(default=None),
    user: UserContext = Depends(check_rate_limit),
    service: RestService = Depends(get_rest_service),
) -> List[Dict[str, Any]]:
    """Rows of a table matching the query-string filter."""
    result = await service.select(user, table, request.query_params, count=_wants_count(prefer))
    if result.total is not None:
        response.headers[TOTAL_COUNT_HEADER] = str(result.total)
    return result.rows


@router.head("/{table}")
async def count_rows(
    table: str,
    request: Request,
    response: Response,
    user: UserContext = Depends(check_rate_limit),
    service: RestService = Depends(get_rest_service),
) -> Response:
    """Number of matching rows in ``X-Total-Count``."""
    total = await service.count(user, table, request.query_params)
    headers = dict(response.headers)
    headers[TOTAL_COUNT_HEADER] = str(total)
    return Response(status_code=200, headers=headers)


@router.get("/{table}/{record_id}")
async def get_row(
    table: str,
    record_id: str,
    request: Request,
    user: UserContext = Depends(check_rate_limit),
    service: RestService = Depends(get_rest_service),
) -> Dict[str, Any]:
    return await service.get(user, table, record_id, request.query_params)


@router.post("/{table}", status_code=201)
async def insert_rows(
    table: str,
    body: RowBody = Body(...),
    user: UserContext = Depends(check_rate_limit),
    service: RestService = Depends(get_rest_service),
) -> List[Dict[str, Any]]:
    """Insert one object or an array of objects atomically."""
    return await service.insert(user, table, body)


@router.patch("/{table}")
async def update_rows(
    table: str,
    request: Request,
    body: Dict[str, Any] = Body(...),
    user: UserContext = Depends(check_rate_limit),
    service: RestService = Depends(get_rest_service),
) -> List[Dict[str, Any]]:
    """Update every visible row matching the filter."""
    return await service.update(user, table, request.query_params, body)


@router.patch("/{table}/{record_id}")
async def update_row(
    table: str,
    record_id: str,
    body: Dict[str, Any] = Body(...),
    user: UserContext = Depends(check_rate_limit),
    service: RestService = Depends(get_rest_service),
) -> Dict[str, Any]:
    return await service.update_by_id(user, table, record_id, body)


@router.delete("/{table}", response_model=DeleteResponse)
async def delete_rows(
    table: str,
    request: Request,
    user: UserContext = Depends(check_rate_limit),
    service: RestService = Depends(get_rest_service),
) -> DeleteResponse:
    """Delete every visible row matching the filter."""
    deleted = await service.delete(user, table, request.query_params)
    return DeleteResponse(deleted=deleted)


@router.delete("/{table}/{record_id}", response_model=DeleteResponse)
async def delete_row(
    table: str,
    record_id: str,
    user: UserContext = Depends(check_rate_limit),
    service: RestService = Depends(get_rest_service),
) -> DeleteResponse:
    deleted = await service.delete_by_id(user, table, record_id)
    return DeleteResponse(deleted=deleted)
