"""Extraction submission and status routes."""

from fastapi import APIRouter, Depends, HTTPException, Path, Request
from sqlalchemy.orm import Session

from extractify.db.dependencies import get_db
from extractify.errors import ModelVersionNotFoundError, UnsupportedFileTypeError
from extractify.job_queue import ExtractionQueue
from extractify.schemas.common import ApiResponse
from extractify.schemas.extraction import (
    ExtractionAccepted,
    ExtractionCreate,
    ExtractionInputRead,
    ExtractionRunRead,
    IntegrationDeliveryRead,
    TokenUsageRead,
)
from extractify.services.extractions import (
    get_extraction_run_for_owner,
    get_latest_extraction_error,
    list_extraction_inputs,
    submit_extraction,
)
from extractify.services.integrations import list_deliveries_for_extraction

router = APIRouter(prefix="/owners/{owner_id}")


def get_queue(request: Request) -> ExtractionQueue:
    queue = getattr(request.app.state, "extraction_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Extraction queue is unavailable")
    return queue


@router.post("/extractions", response_model=ApiResponse[ExtractionAccepted], status_code=202)
def create_extraction(
    payload: ExtractionCreate,
    owner_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    queue: ExtractionQueue = Depends(get_queue),
) -> ApiResponse[ExtractionAccepted]:
    """Record a run for already-uploaded files and queue it for processing."""

    try:
        run, job_id = submit_extraction(db, owner_id, payload, queue.enqueue)
    except UnsupportedFileTypeError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ModelVersionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="No active version found for this model") from exc
    except Exception as exc:
        raise HTTPException(status_code=503, detail="Failed to queue extraction") from exc
    return ApiResponse(data=ExtractionAccepted(extraction_id=run.id, status=run.status, job_id=job_id))


@router.get("/extractions/{extraction_id}", response_model=ApiResponse[ExtractionRunRead])
def get_extraction(
    owner_id: str = Path(..., min_length=1),
    extraction_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[ExtractionRunRead]:
    """Return run status, result, latest error and per-target delivery outcomes."""

    run = get_extraction_run_for_owner(db, owner_id, extraction_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Extraction not found")

    error = get_latest_extraction_error(db, run.id)
    usage = run.usage or None
    return ApiResponse(
        data=ExtractionRunRead(
            id=run.id,
            model_id=run.model_id,
            model_version_id=run.model_version_id,
            llm_model_id=run.llm_model_id,
            status=run.status,
            result=run.result,
            usage=(
                TokenUsageRead(
                    input_tokens=int(usage.get("inputTokens") or 0),
                    output_tokens=int(usage.get("outputTokens") or 0),
                )
                if usage
                else None
            ),
            error_message=error.message if error else None,
            created_at=run.created_at,
            completed_at=run.completed_at,
            inputs=[ExtractionInputRead.model_validate(item) for item in list_extraction_inputs(db, run.id)],
            deliveries=[
                IntegrationDeliveryRead(
                    id=delivery.id,
                    target_id=delivery.target_id,
                    target_name=target.name if target else None,
                    target_type=target.type if target else None,
                    status=delivery.status,
                    response_status=delivery.response_status,
                    error_message=delivery.error_message,
                    created_at=delivery.created_at,
                )
                for delivery, target in list_deliveries_for_extraction(db, run.id)
            ],
        )
    )
