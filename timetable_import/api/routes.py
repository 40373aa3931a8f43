import asyncio
import json
import queue
import time

from fastapi import APIRouter, Depends, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from timetable_import.core.config import settings
from timetable_import.core.events import CourseEventBus
from timetable_import.core.logs import log_feed
from timetable_import.schemas.imports import (
    CourseEditRequest,
    ImportConfirmResponse,
    ImportStateResponse,
    NoticeOut,
    PreviewItemOut,
    PreviewOut,
    TimeSlotEditRequest,
)
from timetable_import.services.ocr import ConfirmError, ScanError, UnsupportedImageError
from timetable_import.services.sessions import WorkflowRegistry, registry
from timetable_import.services.workflow import ImportWorkflow, WorkflowError

router = APIRouter(prefix="/api")

_SSE_POLL_SECONDS = 0.25


def get_registry() -> WorkflowRegistry:
    return registry


def get_line_user_id(x_line_user_id: str | None = Header(None)) -> str:
    return x_line_user_id or settings.default_line_user_id


def get_workflow(
    line_user_id: str = Depends(get_line_user_id),
    workflows: WorkflowRegistry = Depends(get_registry),
) -> ImportWorkflow:
    return workflows.get(line_user_id)


def _state_response(workflow: ImportWorkflow) -> dict:
    selection = workflow.selection
    preview = None
    if selection is not None:
        preview = PreviewOut(
            items=[
                PreviewItemOut(**item.model_dump(), index=i, selected=selection.is_selected(i))
                for i, item in enumerate(selection.items)
            ],
            total_courses=selection.batch.total_courses,
            courses_with_conflicts=selection.batch.courses_with_conflicts,
            selected_count=selection.selected_count,
            available_count=selection.available_count,
        )
    notice = workflow.notice
    return {
        "state": workflow.state.value,
        "generation": workflow.generation,
        "trigger_enabled": workflow.trigger_enabled,
        "preview": preview,
        "notice": NoticeOut(**notice.to_dict()) if notice else None,
    }


# ── Imports ───────────────────────────────────────────────────────────────────

@router.post("/imports/scan", response_model=ImportStateResponse)
def scan_timetable_endpoint(
    file: UploadFile = File(...),
    workflow: ImportWorkflow = Depends(get_workflow),
):
    data = file.file.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes // (1024 * 1024)
        raise HTTPException(status_code=413, detail=f"File exceeds {limit_mb} MB limit.")
    try:
        workflow.scan(data, filename=file.filename or None)
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except UnsupportedImageError as e:
        raise HTTPException(status_code=415, detail=e.message)
    except ScanError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return _state_response(workflow)


@router.get("/imports", response_model=ImportStateResponse)
def get_import_state_endpoint(workflow: ImportWorkflow = Depends(get_workflow)):
    return _state_response(workflow)


@router.delete("/imports", response_model=ImportStateResponse)
def cancel_import_endpoint(workflow: ImportWorkflow = Depends(get_workflow)):
    workflow.cancel()
    return _state_response(workflow)


@router.post("/imports/notice/ack", response_model=ImportStateResponse)
def acknowledge_notice_endpoint(workflow: ImportWorkflow = Depends(get_workflow)):
    workflow.acknowledge()
    return _state_response(workflow)


# NOTE: the literal /imports/items/select-available MUST be registered BEFORE
# the parametric /imports/items/{index}/... routes.

@router.post("/imports/items/select-available", response_model=ImportStateResponse)
def toggle_all_available_endpoint(workflow: ImportWorkflow = Depends(get_workflow)):
    try:
        workflow.toggle_all_available()
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _state_response(workflow)


@router.post("/imports/items/{index}/toggle", response_model=ImportStateResponse)
def toggle_item_endpoint(index: int, workflow: ImportWorkflow = Depends(get_workflow)):
    try:
        workflow.toggle_select(index)
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _state_response(workflow)


@router.patch("/imports/items/{index}", response_model=ImportStateResponse)
def edit_item_endpoint(
    index: int,
    payload: CourseEditRequest,
    workflow: ImportWorkflow = Depends(get_workflow),
):
    try:
        workflow.edit_course(index, **payload.model_dump(exclude_unset=True))
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _state_response(workflow)


@router.patch("/imports/items/{index}/schedule/{slot_index}", response_model=ImportStateResponse)
def edit_item_slot_endpoint(
    index: int,
    slot_index: int,
    payload: TimeSlotEditRequest,
    workflow: ImportWorkflow = Depends(get_workflow),
):
    try:
        workflow.edit_slot(index, slot_index, **payload.model_dump(exclude_unset=True))
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    return _state_response(workflow)


@router.post("/imports/confirm", response_model=ImportConfirmResponse)
def confirm_import_endpoint(workflow: ImportWorkflow = Depends(get_workflow)):
    try:
        outcome = workflow.confirm()
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ConfirmError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return {**_state_response(workflow), "outcome": outcome}


# ── Events ────────────────────────────────────────────────────────────────────

async def event_stream(
    request: Request,
    events: CourseEventBus,
    token: int,
    q: "queue.Queue",
    heartbeat: float,
    poll_interval: float = _SSE_POLL_SECONDS,
):
    """Server-Sent Events body: one message per course event, comments as heartbeat.

    Polls the subscriber queue without blocking a worker thread and stops
    once the client has gone away.
    """
    try:
        yield "retry: 3000\n\n"
        waited = 0.0
        while not await request.is_disconnected():
            try:
                event = q.get_nowait()
            except queue.Empty:
                if waited >= heartbeat:
                    waited = 0.0
                    yield f": heartbeat {int(time.time())}\n\n"
                await asyncio.sleep(poll_interval)
                waited += poll_interval
                continue
            waited = 0.0
            yield f"event: {event.type}\ndata: {json.dumps(event.to_dict())}\n\n"
    finally:
        events.unsubscribe(token)


@router.get("/imports/events")
async def course_events_endpoint(
    request: Request,
    line_user_id: str = Depends(get_line_user_id),
    workflows: WorkflowRegistry = Depends(get_registry),
):
    token, q = workflows.events.subscribe(line_user_id)
    return StreamingResponse(
        event_stream(request, workflows.events, token, q, settings.sse_heartbeat_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform", "Connection": "keep-alive"},
    )


# ── Debug ─────────────────────────────────────────────────────────────────────

@router.get("/debug/logs")
def recent_logs_endpoint(limit: int = Query(100, ge=1, le=1000)):
    if not settings.debug:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"records": log_feed.recent(limit)}
