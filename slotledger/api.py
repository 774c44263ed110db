from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .gateway import EtherscanGateway
from .logging_config import setup_logging
from .models import (
    CreateSubmissionRequest, SubmissionCreatedResponse, Submission,
    PaymentStatusResponse, VerifyPaymentRequest, VerifyPaymentResponse, StatsResponse,
)
from .reconciler import PaymentReconciler
from .service import (
    PaymentService, PaymentServiceError, SubmissionNotFoundError, CapacityExhaustedError,
)


def build_service(settings: Settings) -> PaymentService:
    gateway = EtherscanGateway(
        api_key=settings.etherscan_api_key,
        base_url=settings.etherscan_api_url,
        chain_id=settings.etherscan_chain_id,
        timeout=settings.ledger_timeout_seconds,
    )
    return PaymentService(gateway=gateway, settings=settings)


def create_app(
    service: Optional[PaymentService] = None,
    reconciler: Optional[PaymentReconciler] = None,
    settings: Optional[Settings] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    service = service or build_service(settings)
    if reconciler is None and settings.reconciler_enabled:
        reconciler = PaymentReconciler(
            service,
            interval_seconds=settings.reconcile_interval_seconds,
            pending_window=timedelta(hours=settings.pending_window_hours),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if reconciler is not None:
            reconciler.start()
        yield
        if reconciler is not None:
            reconciler.stop(timeout=settings.ledger_timeout_seconds)

    app = FastAPI(
        title="Slot Ledger API",
        description="Payment confirmation and permanent slot allocation for paid submissions",
        version="1.0.0",
        root_path=root_path,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = service
    app.state.reconciler = reconciler

    @app.get("/health", tags=["System"])
    def health_check():
        return {
            "status": "healthy",
            "service": "slot-ledger",
            "reconciler_running": reconciler is not None and reconciler.is_running,
        }

    @app.post("/submissions", response_model=SubmissionCreatedResponse, status_code=status.HTTP_201_CREATED, tags=["Submissions"])
    def create_submission(request: CreateSubmissionRequest) -> SubmissionCreatedResponse:
        try:
            return service.create_submission(request)
        except CapacityExhaustedError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except PaymentServiceError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/submissions/{submission_id}", response_model=Submission, tags=["Submissions"])
    def get_submission(submission_id: UUID) -> Submission:
        try:
            return service.get_submission(submission_id)
        except SubmissionNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Submission {submission_id} not found")

    @app.get("/payments/{submission_id}/status", response_model=PaymentStatusResponse, tags=["Payments"])
    def get_payment_status(submission_id: UUID, check_ledger: bool = False) -> PaymentStatusResponse:
        try:
            return service.get_payment_status(submission_id, check_ledger=check_ledger)
        except SubmissionNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Submission {submission_id} not found")

    @app.post("/payments/verify", response_model=VerifyPaymentResponse, tags=["Payments"])
    def verify_payment(request: VerifyPaymentRequest) -> VerifyPaymentResponse:
        try:
            return service.verify_transaction(request.submission_id, request.transaction_hash)
        except SubmissionNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Submission {request.submission_id} not found")
        except PaymentServiceError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/stats", response_model=StatsResponse, tags=["Stats"])
    def get_stats() -> StatsResponse:
        return service.get_stats()

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
