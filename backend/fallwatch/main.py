from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .calls import CaregiverCallService, TwilioCallProvider
from .config import Settings, get_settings
from .debounce import AlertDebouncer
from .errors import DispatchRejected, DispatchUnavailable, MalformedFrame
from .fall import FallClassifier
from .keypoints import select_primary
from .schemas import (
    CallRequest,
    CallResponse,
    FrameAnalyzeRequest,
    PoseAnalyzeResponse,
    PoseClassifyRequest,
)

logging.basicConfig(
    level=get_settings().log_level,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)
logger = logging.getLogger(__name__)

_estimators: Dict[str, object] = {}


def get_estimator(preferred: str | None):
    from .pose import PoseEstimator, get_torch_device

    _, device_type = get_torch_device(preferred)
    if device_type not in _estimators:
        logger.debug("Creating PoseEstimator for device_type=%s", device_type)
        _estimators[device_type] = PoseEstimator(preferred_device=device_type)
    return _estimators[device_type]


def get_call_service(request: Request) -> CaregiverCallService:
    return request.app.state.call_service


def get_classifier(request: Request) -> FallClassifier:
    return request.app.state.classifier


def create_app(settings: Optional[Settings] = None, call_service: Optional[CaregiverCallService] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.call_service is None:
            # Refuse to serve calls without provider credentials
            provider = TwilioCallProvider.from_settings(settings)
            app.state.call_service = CaregiverCallService(provider, AlertDebouncer(settings.call_cooldown_ms))
        logger.debug(
            "Call service ready; cooldown=%d ms, thresholds=%.1f/%.1f",
            app.state.call_service.debouncer.cooldown_ms,
            settings.fall_angle_low_deg,
            settings.fall_angle_high_deg,
        )
        yield
        logger.debug("Call service shutting down")

    app = FastAPI(title="Fall Detection Call Service", version="0.2.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.call_service = call_service
    app.state.classifier = FallClassifier.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> dict:
        from .pose import get_torch_device, summarize_device

        device, _ = get_torch_device(settings.preferred_device)
        return {
            "status": "ok",
            "device": summarize_device(device),
            "cooldown_ms": settings.call_cooldown_ms,
            "thresholds": {
                "min_confidence": settings.min_confidence,
                "low_angle_deg": settings.fall_angle_low_deg,
                "high_angle_deg": settings.fall_angle_high_deg,
            },
        }

    @app.post("/classify_pose", response_model=PoseAnalyzeResponse)
    async def classify_pose(
        req: PoseClassifyRequest,
        classifier: FallClassifier = Depends(get_classifier),
    ) -> PoseAnalyzeResponse:
        if req.min_confidence is not None:
            classifier = FallClassifier(req.min_confidence, classifier.low_angle_deg, classifier.high_angle_deg)
        snapshot = select_primary(req.poses)
        verdict = classifier.classify(snapshot)
        logger.debug("/classify_pose: %d pose(s) is_fall=%s angle=%s", len(req.poses), verdict.is_fall, verdict.angle_degrees)
        return PoseAnalyzeResponse(verdict=verdict, snapshot=snapshot)

    @app.post("/analyze_frame", response_model=PoseAnalyzeResponse)
    async def analyze_frame(
        req: FrameAnalyzeRequest,
        classifier: FallClassifier = Depends(get_classifier),
    ) -> PoseAnalyzeResponse:
        from .utils import data_url_to_image

        logger.debug("/analyze_frame called. preferred_device=%s", req.preferred_device)
        try:
            image = data_url_to_image(req.image_base64)
        except MalformedFrame as e:
            raise HTTPException(status_code=400, detail=str(e))
        try:
            estimator = get_estimator(req.preferred_device or settings.preferred_device)
            people = estimator.estimate(image)
        except Exception as e:
            logger.exception("Error in /analyze_frame: %s", e)
            raise HTTPException(status_code=500, detail=str(e))
        snapshot = select_primary(people)
        verdict = classifier.classify(snapshot)
        logger.debug("Fall detection: is_fall=%s angle=%s", verdict.is_fall, verdict.angle_degrees)
        return PoseAnalyzeResponse(verdict=verdict, snapshot=snapshot)

    @app.post("/api/call-caregiver", response_model=CallResponse)
    async def call_caregiver(
        request: Request,
        service: CaregiverCallService = Depends(get_call_service),
    ) -> CallResponse:
        # Parsed by hand so every bad body is a 400, never a 422
        try:
            req = CallRequest.model_validate(await request.json())
        except (ValueError, ValidationError):
            raise HTTPException(status_code=400, detail="Phone number is required")
        to_phone_number = (req.to_phone_number or "").strip()
        if not to_phone_number:
            raise HTTPException(status_code=400, detail="Phone number is required")
        try:
            result = await service.request_call(to_phone_number, severity=req.severity)
        except DispatchRejected as e:
            logger.warning("Provider rejected call to %s: %s", to_phone_number, e.reason)
            raise HTTPException(status_code=400, detail=e.reason)
        except DispatchUnavailable as e:
            logger.error("Error initiating call to %s: %s", to_phone_number, e.reason)
            raise HTTPException(status_code=500, detail="Error initiating call")
        except Exception as e:
            logger.exception("Error in /api/call-caregiver: %s", e)
            raise HTTPException(status_code=500, detail="Error initiating call")
        if result.status == "suppressed":
            return CallResponse(
                status="suppressed",
                detail=f"Call already placed recently; next allowed in {result.remaining_ms} ms",
            )
        return CallResponse(status="initiated", call_sid=result.call_sid, detail="Call initiated")

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
