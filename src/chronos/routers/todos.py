from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..auth import get_current_user_id
from ..realtime import ConnectionHub, get_hub
from ..repositories import SORT_FIELDS, ListQuery, Store, get_store
from ..schemas import (
    EventCreate,
    EventOut,
    TodoConvert,
    TodoCreate,
    TodoOut,
    TodoPriority,
    TodoReminderIn,
    TodoStatus,
    TodoUpdate,
)
from ..utils import pagination_envelope
from .calendars import resolve_calendar

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
)


class PaginationEnvelope(BaseModel):
    """
    Envelope for paginated list responses.
    """
    items: List[TodoOut] = Field(..., description="List of Todo items")
    total: int = Field(..., description="Total number of items matching the query")
    limit: int = Field(..., description="Limit applied to the query")
    offset: int = Field(..., description="Offset applied to the query")


class TodoLists(BaseModel):
    lists: List[str] = Field(..., description="Names of the lists in use, sorted")


class TodoConverted(BaseModel):
    event: EventOut
    todo: TodoOut


def _get_store(store: Store = Depends(get_store)) -> Store:
    """
    Dependency wrapper for the store to keep signatures clean.
    """
    return store


def _publish(hub: ConnectionHub, user_id: str, kind: str, todo: TodoOut) -> None:
    hub.publish(user_id, {"type": kind, "todo": todo.model_dump(mode="json")})


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new Todo item and return the created resource.",
    responses={
        201: {"description": "Todo created successfully"},
        422: {"description": "Validation error"},
    },
)
def create_todo(
    payload: TodoCreate,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    hub: ConnectionHub = Depends(get_hub),
) -> TodoOut:
    """
    Create a new Todo.
    """
    created = TodoOut(**store.todos.create(user_id, payload))  # type: ignore[arg-type]
    _publish(hub, user_id, "todo:created", created)
    return created


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=PaginationEnvelope,
    summary="List Todos",
    description=(
        "List todos with optional filters and pagination.\n\n"
        "Query parameters:\n"
        "- limit: max number of items to return (0..1000)\n"
        "- offset: number of items to skip (>=0)\n"
        "- status / priority / list: exact-match filters\n"
        "- q: search query for title/description (substring match)\n"
        "- sort: one of created_at, updated_at, due_date, optionally prefixed with '-'\n"
        "- order: asc or desc (if provided, it overrides the direction in sort)\n\n"
        "Returns a pagination envelope with items and total count."
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        400: {"description": "Invalid query parameters"},
    },
)
def list_todos(
    limit: int = Query(50, ge=0, le=1000, description="Maximum number of items to return"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    status_filter: Optional[TodoStatus] = Query(None, alias="status", description="Filter by status"),
    priority: Optional[TodoPriority] = Query(None, description="Filter by priority"),
    list_name: Optional[str] = Query(None, alias="list", description="Filter by list name"),
    q: Optional[str] = Query(None, description="Search text for title/description"),
    sort: Optional[str] = Query("-created_at", description="Sort field, '-' prefix for descending"),
    order: Optional[str] = Query(None, description="Override sort direction: 'asc' or 'desc'"),
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> PaginationEnvelope:
    """
    List todos with pagination and filters.
    """
    normalized_sort = (sort or "-created_at").strip().lower()
    field = normalized_sort.lstrip("-")
    if order:
        ord_norm = order.strip().lower()
        if ord_norm not in {"asc", "desc"}:
            raise HTTPException(status_code=400, detail="order must be 'asc' or 'desc'")
        if field not in SORT_FIELDS:
            field = "created_at"
        normalized_sort = f"-{field}" if ord_norm == "desc" else field
    elif field not in SORT_FIELDS:
        normalized_sort = "-created_at"

    query = ListQuery(
        limit=limit,
        offset=offset,
        status=status_filter,
        priority=priority,
        list_name=list_name.strip() if list_name else None,
        search=q.strip() if q else None,
        sort=normalized_sort,
    )
    items, total = store.todos.list(user_id, query)
    envelope = pagination_envelope(
        items=[TodoOut(**it) for it in items],  # type: ignore[arg-type]
        total=total,
        limit=limit,
        offset=offset,
    )
    return PaginationEnvelope(**envelope)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/lists",
    response_model=TodoLists,
    summary="List Todo Lists",
    description="Return the distinct list names the caller's todos belong to.",
)
def list_todo_lists(
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> TodoLists:
    return TodoLists(lists=store.todos.distinct_lists(user_id))


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Get Todo",
    description="Get a single Todo item by ID.",
    responses={
        200: {"description": "Todo found"},
        404: {"description": "Todo not found"},
    },
)
def get_todo(
    todo_id: int,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
) -> TodoOut:
    """
    Retrieve a single Todo item by its ID.
    """
    item = store.todos.get(user_id, todo_id)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    return TodoOut(**item)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.put(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Replace Todo",
    description=(
        "Replace an existing Todo item. Any fields omitted will be set to their default/null "
        "equivalent as per the schema."
    ),
    responses={
        200: {"description": "Todo updated"},
        404: {"description": "Todo not found"},
    },
)
def put_todo(
    todo_id: int,
    payload: TodoCreate,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    hub: ConnectionHub = Depends(get_hub),
) -> TodoOut:
    """
    Full update (replace) semantics implemented via the partial-update capable repository by
    mapping TodoCreate into TodoUpdate fields.
    """
    update = TodoUpdate(
        title=payload.title,
        description=payload.description,
        status=payload.status,
        priority=payload.priority,
        list=payload.list,
        due_date=payload.due_date,
        reminder=payload.reminder or TodoReminderIn(),
    )
    updated = store.todos.update(user_id, todo_id, update)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    out = TodoOut(**updated)  # type: ignore[arg-type]
    _publish(hub, user_id, "todo:updated", out)
    return out


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    description="Partially update fields of a Todo item.",
    responses={
        200: {"description": "Todo updated"},
        404: {"description": "Todo not found"},
    },
)
def patch_todo(
    todo_id: int,
    payload: TodoUpdate,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    hub: ConnectionHub = Depends(get_hub),
) -> TodoOut:
    """
    Partial update of a Todo item.
    """
    updated = store.todos.update(user_id, todo_id, payload)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    out = TodoOut(**updated)  # type: ignore[arg-type]
    _publish(hub, user_id, "todo:updated", out)
    return out


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Todo",
    description="Delete a Todo item by ID.",
    responses={
        204: {"description": "Todo deleted"},
        404: {"description": "Todo not found"},
    },
)
def delete_todo(
    todo_id: int,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    hub: ConnectionHub = Depends(get_hub),
) -> None:
    """
    Delete a Todo. Returns 204 on success, 404 if not found.
    """
    if not store.todos.delete(user_id, todo_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    hub.publish(user_id, {"type": "todo:deleted", "id": todo_id})
    return None


# PUBLIC_INTERFACE
@router.post(
    "/{todo_id}/convert-to-event",
    response_model=TodoConverted,
    status_code=status.HTTP_201_CREATED,
    summary="Convert Todo to Event",
    description=(
        "Schedule a todo into a calendar: create an event with the todo's title and description "
        "and link the todo to it. Without `calendar_id` the default calendar is used."
    ),
    responses={
        201: {"description": "Event created and linked"},
        404: {"description": "Todo or calendar not found"},
    },
)
def convert_todo_to_event(
    todo_id: int,
    payload: TodoConvert,
    user_id: str = Depends(get_current_user_id),
    store: Store = Depends(_get_store),
    hub: ConnectionHub = Depends(get_hub),
) -> TodoConverted:
    todo = store.todos.get(user_id, todo_id)
    if not todo:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    calendar = resolve_calendar(store, user_id, payload.calendar_id)
    event = store.events.create(
        user_id,
        EventCreate(
            title=todo["title"][:200],
            calendar_id=calendar["id"],
            description=todo["description"][:2000] if todo["description"] else None,
            start=payload.start,
            end=payload.end,
        ),
    )
    linked = store.todos.link_event(user_id, todo_id, event["id"])
    if not linked:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Todo not found")
    event_out = EventOut(**event)
    todo_out = TodoOut(**linked)  # type: ignore[arg-type]
    hub.publish(user_id, {"type": "event:created", "event": event_out.model_dump(mode="json")})
    _publish(hub, user_id, "todo:updated", todo_out)
    return TodoConverted(event=event_out, todo=todo_out)
