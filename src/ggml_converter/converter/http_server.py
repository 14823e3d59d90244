"""HTTP daemon for background conversion jobs."""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel, ConfigDict

from ggml_converter.application.jobs import ConversionJob, JobManager
from ggml_converter.application.options import ConverterSettings
from ggml_converter.application.use_cases import check_conversion
from ggml_converter.errors import (
    ConversionValidationError,
    DescriptorError,
    InvalidConversionDataError,
)
from ggml_converter.plugins.registry import create_default_registry
from ggml_converter.schemas import (
    CheckResponse,
    ConversionRequestPayload,
    FamilyPayload,
    JobPayload,
    RequiredFilePayload,
    ValidationErrorPayload,
)

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health response payload."""

    model_config = ConfigDict(extra="forbid")

    status: str


def _job_payload(job: ConversionJob) -> JobPayload:
    snapshot = job.snapshot()
    return JobPayload(
        id=snapshot.id,
        family=snapshot.family,
        state=snapshot.state.value,
        steps=list(snapshot.steps),
        current_index=snapshot.current_index,
        current_step=snapshot.current_step,
        exit_code=snapshot.exit_code,
        result=snapshot.result,
    )


def _validation_detail(exc: ConversionValidationError) -> dict[str, str]:
    return ValidationErrorPayload(kind=str(exc.kind), message=exc.message).model_dump()


def create_app(manager: JobManager | None = None) -> FastAPI:
    """Create the conversion daemon HTTP application.

    Parameters
    ----------
    manager : JobManager | None, optional
        Job manager to serve; one is built from environment settings and the
        default registry when omitted, and shut down with the app.
    """
    owns_manager = manager is None
    jobs = manager or JobManager(
        create_default_registry(), ConverterSettings.from_env()
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if owns_manager:
            jobs.shutdown()

    app = FastAPI(
        title="GGML Converter Daemon",
        version="0.1.0",
        description="Validate model inputs and run GGML conversions in the background.",
        lifespan=lifespan,
    )

    @app.get("/healthz", response_model=HealthResponse)
    async def healthz() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/readyz", response_model=HealthResponse)
    async def readyz() -> HealthResponse:
        return HealthResponse(status="ready")

    @app.get("/v1/families", response_model=list[FamilyPayload])
    async def list_families() -> list[FamilyPayload]:
        return [
            FamilyPayload(
                name=descriptor.name,
                description=descriptor.description,
                steps=[step.value for step in descriptor.conversion_steps],
            )
            for descriptor in jobs.registry.descriptors()
        ]

    @app.post("/v1/families/{family}/check", response_model=CheckResponse)
    def check_family(family: str, data: dict[str, object]) -> CheckResponse:
        """Run the validation gate and return the required-files checklist."""
        try:
            descriptor = jobs.registry.get(family)
            parsed = descriptor.parse_data(data)
        except DescriptorError as exc:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
            ) from exc
        except InvalidConversionDataError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
            ) from exc
        report = check_conversion(descriptor, parsed)
        return CheckResponse(
            family=report.family,
            valid=report.valid,
            required_files=[
                RequiredFilePayload(path=str(probe.path), found=probe.found)
                for probe in report.required_files
            ],
            steps=[step.value for step in report.steps],
            error=(
                ValidationErrorPayload(
                    kind=str(report.error.kind), message=report.error.message
                )
                if report.error is not None
                else None
            ),
        )

    @app.post(
        "/v1/conversions",
        response_model=JobPayload,
        status_code=status.HTTP_202_ACCEPTED,
    )
    def start_conversion(request: ConversionRequestPayload) -> JobPayload:
        """Validate the request and schedule the family's pipeline."""
        try:
            job = jobs.submit(request.family, request.data)
        except DescriptorError as exc:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
            ) from exc
        except InvalidConversionDataError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
            ) from exc
        except ConversionValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=_validation_detail(exc),
            ) from exc
        except Exception as exc:  # pragma: no cover
            logger.exception("unexpected error while starting conversion")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="internal server error",
            ) from exc
        return _job_payload(job)

    @app.get("/v1/conversions", response_model=list[JobPayload])
    async def list_conversions() -> list[JobPayload]:
        return [_job_payload(job) for job in jobs.jobs()]

    @app.get("/v1/conversions/{job_id}", response_model=JobPayload)
    async def get_conversion(job_id: str) -> JobPayload:
        job = jobs.get(job_id)
        if job is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"unknown conversion '{job_id}'",
            )
        return _job_payload(job)

    @app.delete("/v1/conversions/{job_id}", response_model=JobPayload)
    async def cancel_conversion(job_id: str) -> JobPayload:
        job = jobs.cancel(job_id)
        if job is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"unknown conversion '{job_id}'",
            )
        return _job_payload(job)

    return app


def main() -> None:
    """Run converter daemon HTTP entrypoint."""
    import uvicorn

    parser = argparse.ArgumentParser(description="GGML converter daemon HTTP server.")
    parser.add_argument(
        "--host",
        default=os.getenv("CONVERTER_HTTP_HOST", "127.0.0.1"),
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("CONVERTER_HTTP_PORT", "8090")),
    )
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "ggml_converter.converter.http_server:create_app",
        host=args.host,
        port=args.port,
        reload=False,
        factory=True,
    )


if __name__ == "__main__":
    main()
