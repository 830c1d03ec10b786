from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from crm_fields.context import get_correlation_id
from crm_fields.fields.binder import RecordBinder
from crm_fields.fields.customizer import (
    CustomFieldLimitError,
    FieldCustomizer,
    FieldCustomizerError,
    FieldNameConflictError,
    FieldNotDeletableError,
    FieldNotFoundError,
    UnknownModuleError,
)
from crm_fields.fields.registry import FieldRegistry
from crm_fields.fields.schemas import (
    BindResult,
    CustomFieldUsage,
    FieldDefinition,
    FieldDraft,
    FieldMoveRequest,
    FieldReorderRequest,
    FieldSectionsRead,
    FieldUpdate,
    ValidationResult,
)


router = APIRouter(prefix="/api/fields", tags=["fields"])


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=asdict(payload))


def get_field_registry(request: Request) -> FieldRegistry:
    return request.app.state.field_registry


def get_record_binder(request: Request) -> RecordBinder:
    return request.app.state.record_binder


def _customizer(registry: FieldRegistry, module: str) -> FieldCustomizer:
    try:
        return FieldCustomizer(registry, module)
    except UnknownModuleError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown module: {module}")


def _require_module(registry: FieldRegistry, module: str) -> None:
    if not registry.has_module(module):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown module: {module}")


def _customizer_error_status(exc: FieldCustomizerError) -> int:
    if isinstance(exc, (UnknownModuleError, FieldNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (FieldNotDeletableError, FieldNameConflictError, CustomFieldLimitError)):
        return status.HTTP_409_CONFLICT
    return status.HTTP_422_UNPROCESSABLE_ENTITY


def _failure(request: Request, exc: HTTPException | FieldCustomizerError, code: str) -> JSONResponse:
    if isinstance(exc, HTTPException):
        return error_response(request, status_code=exc.status_code, code=code, message=str(exc.detail), details=exc.detail)
    return error_response(request, status_code=_customizer_error_status(exc), code=code, message=str(exc))


@router.post("/reset", response_model=dict[str, list[str]])
def reset_fields(
    request: Request,
    module: str | None = Query(default=None),
    registry: FieldRegistry = Depends(get_field_registry),
) -> dict[str, list[str]] | JSONResponse:
    reset = registry.reset_to_defaults(module)
    if not reset:
        return error_response(
            request,
            status_code=status.HTTP_404_NOT_FOUND,
            code="fields_reset_failed",
            message=f"no defaults for module: {module}",
        )
    return {"modules": reset}


@router.get("/{module}", response_model=list[FieldDefinition])
def list_fields(
    request: Request,
    module: str,
    visible_only: bool = Query(default=False),
    registry: FieldRegistry = Depends(get_field_registry),
) -> list[FieldDefinition] | JSONResponse:
    try:
        _require_module(registry, module)
        if visible_only:
            return registry.get_visible_fields(module)
        return registry.get_fields(module)
    except HTTPException as exc:
        return _failure(request, exc, "fields_list_failed")


@router.get("/{module}/usage", response_model=CustomFieldUsage)
def get_custom_field_usage(
    request: Request,
    module: str,
    registry: FieldRegistry = Depends(get_field_registry),
) -> CustomFieldUsage | JSONResponse:
    try:
        return _customizer(registry, module).usage()
    except (HTTPException, FieldCustomizerError) as exc:
        return _failure(request, exc, "fields_usage_failed")


@router.get("/{module}/sections", response_model=FieldSectionsRead)
def get_field_sections(
    request: Request,
    module: str,
    search: str = Query(default=""),
    registry: FieldRegistry = Depends(get_field_registry),
) -> FieldSectionsRead | JSONResponse:
    try:
        customizer = _customizer(registry, module)
        return FieldSectionsRead(
            sections=customizer.visible_sections(),
            hidden=customizer.hidden_fields(search),
            usage=customizer.usage(),
        )
    except (HTTPException, FieldCustomizerError) as exc:
        return _failure(request, exc, "fields_sections_failed")


@router.get("/{module}/{field_id}", response_model=FieldDefinition)
def get_field(
    request: Request,
    module: str,
    field_id: str,
    registry: FieldRegistry = Depends(get_field_registry),
) -> FieldDefinition | JSONResponse:
    try:
        _require_module(registry, module)
        definition = registry.get_field(module, field_id)
        if definition is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="field not found")
        return definition
    except HTTPException as exc:
        return _failure(request, exc, "fields_get_failed")


@router.post("/{module}", response_model=FieldDefinition, status_code=status.HTTP_201_CREATED)
def create_field(
    request: Request,
    module: str,
    dto: FieldDraft,
    registry: FieldRegistry = Depends(get_field_registry),
) -> FieldDefinition | JSONResponse:
    try:
        return _customizer(registry, module).create_field(dto)
    except (HTTPException, FieldCustomizerError) as exc:
        return _failure(request, exc, "fields_create_failed")


@router.patch("/{module}/{field_id}", response_model=FieldDefinition)
def update_field(
    request: Request,
    module: str,
    field_id: str,
    dto: FieldUpdate,
    registry: FieldRegistry = Depends(get_field_registry),
) -> FieldDefinition | JSONResponse:
    try:
        return _customizer(registry, module).edit_field(field_id, dto)
    except (HTTPException, FieldCustomizerError) as exc:
        return _failure(request, exc, "fields_update_failed")


@router.post("/{module}/{field_id}/toggle-visibility", response_model=FieldDefinition)
def toggle_field_visibility(
    request: Request,
    module: str,
    field_id: str,
    registry: FieldRegistry = Depends(get_field_registry),
) -> FieldDefinition | JSONResponse:
    try:
        _require_module(registry, module)
        registry.toggle_field_visibility(module, field_id)
        definition = registry.get_field(module, field_id)
        if definition is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="field not found")
        return definition
    except HTTPException as exc:
        return _failure(request, exc, "fields_toggle_failed")


@router.post("/{module}/{field_id}/move", response_model=list[FieldDefinition])
def move_field(
    request: Request,
    module: str,
    field_id: str,
    dto: FieldMoveRequest | None = None,
    registry: FieldRegistry = Depends(get_field_registry),
) -> list[FieldDefinition] | JSONResponse:
    try:
        return _customizer(registry, module).move_field(field_id, dto.target_index if dto is not None else None)
    except (HTTPException, FieldCustomizerError) as exc:
        return _failure(request, exc, "fields_move_failed")


@router.put("/{module}/order", response_model=list[FieldDefinition])
def reorder_fields(
    request: Request,
    module: str,
    dto: FieldReorderRequest,
    registry: FieldRegistry = Depends(get_field_registry),
) -> list[FieldDefinition] | JSONResponse:
    try:
        _require_module(registry, module)
        reordered = registry.reorder_fields(module, dto.field_ids)
        return reordered or []
    except HTTPException as exc:
        return _failure(request, exc, "fields_reorder_failed")


@router.delete("/{module}/{field_id}", response_model=None)
def delete_field(
    request: Request,
    module: str,
    field_id: str,
    confirm: bool = Query(default=False),
    registry: FieldRegistry = Depends(get_field_registry),
) -> dict[str, str] | JSONResponse:
    try:
        customizer = _customizer(registry, module)
        pending = customizer.request_delete(field_id)
        if not confirm:
            return error_response(
                request,
                status_code=status.HTTP_400_BAD_REQUEST,
                code="fields_delete_unconfirmed",
                message="delete requires confirmation",
                details={"prompt": pending.prompt},
            )
        outcome = customizer.confirm_delete(pending)
        return {"field_id": field_id, "outcome": outcome.value}
    except (HTTPException, FieldCustomizerError) as exc:
        return _failure(request, exc, "fields_delete_failed")


@router.post("/{module}/validate", response_model=ValidationResult)
def validate_record(
    request: Request,
    module: str,
    draft: dict[str, Any] = Body(...),
    registry: FieldRegistry = Depends(get_field_registry),
    binder: RecordBinder = Depends(get_record_binder),
) -> ValidationResult | JSONResponse:
    try:
        _require_module(registry, module)
        return binder.validate(module, draft)
    except HTTPException as exc:
        return _failure(request, exc, "fields_validate_failed")


@router.post("/{module}/bind", response_model=BindResult)
def bind_record(
    request: Request,
    module: str,
    draft: dict[str, Any] = Body(...),
    registry: FieldRegistry = Depends(get_field_registry),
    binder: RecordBinder = Depends(get_record_binder),
) -> BindResult | JSONResponse:
    try:
        _require_module(registry, module)
        result = binder.bind(module, draft)
        if not result.validation.valid:
            return error_response(
                request,
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                code="fields_bind_invalid",
                message="record failed field validation",
                details=result.validation.errors,
            )
        return result
    except HTTPException as exc:
        return _failure(request, exc, "fields_bind_failed")
