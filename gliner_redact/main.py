from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, HTTPException

from gliner_redact.anonymization import AnonymizationService, build_anonymization_service
from gliner_redact.errors import ConfigurationError, ExecutionError, ModelUnavailableError
from gliner_redact.models.api import (
    AnonymizeRequest,
    AnonymizeResponse,
    DetectRequest,
    DetectResponse,
    EntityItem,
    ReidentifyRequest,
    ReidentifyResponse,
    StatsRequest,
    StatsResponse,
)
from gliner_redact.models.entities import Entity
from gliner_redact.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="GLiNER Redact Service", version="0.1.0")


def _entity_items(entities: list[Entity]) -> list[EntityItem]:
    return [
        EntityItem(
            start=entity.start,
            end=entity.end,
            text=entity.text,
            label=entity.label,
            score=float(entity.score),
            detector=entity.detector,
        )
        for entity in entities
    ]


def _anonymizer() -> AnonymizationService:
    service = getattr(app.state, "anonymizer", None)
    if service is None:
        raise HTTPException(status_code=503, detail="anonymization service is not initialized")
    return service


async def _initialize_model_in_background() -> None:
    # Requests are served by the regex fallback until the model is ready.
    service = _anonymizer()
    runtime = service.runtime
    if runtime is None:
        return
    try:
        ready = await asyncio.to_thread(runtime.ensure_ready)
    except Exception as exc:
        app.state.models_ready = False
        app.state.models_load_error = runtime.load_error() or str(exc)
        logger.error("gliner model failed to initialize: %s", app.state.models_load_error)
        return
    app.state.models_ready = ready
    app.state.models_load_error = runtime.load_error()
    if ready:
        logger.info("gliner model initialized")
    else:
        logger.warning("gliner model unavailable, serving regex fallback: %s", app.state.models_load_error)


@app.on_event("startup")
async def startup() -> None:
    app.state.models_ready = False
    app.state.models_load_error = None
    app.state.anonymizer = build_anonymization_service(settings)
    logger.info(
        "%s starting (mode=%s, model=%s, locales=%s)",
        settings.service_name,
        settings.anonymization_mode,
        settings.model_name,
        ",".join(settings.regex_locales),
    )
    if settings.anonymization_mode != "regex":
        app.state.models_init_task = asyncio.create_task(_initialize_model_in_background())


@app.on_event("shutdown")
async def shutdown() -> None:
    task = getattr(app.state, "models_init_task", None)
    if task is not None and not task.done():
        task.cancel()
    service = getattr(app.state, "anonymizer", None)
    if service is not None and service.runtime is not None:
        service.runtime.dispose()


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
async def readyz() -> dict[str, str]:
    try:
        service = getattr(app.state, "anonymizer", None)
        if service is None:
            raise RuntimeError("anonymization service is not initialized")
        if service.mode != "regex" and not bool(getattr(app.state, "models_ready", False)):
            load_error = str(getattr(app.state, "models_load_error", None) or "")
            raise RuntimeError(load_error or "model runtime is still loading")
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail=f"not ready: {exc}") from exc
    return {"status": "ready"}


@app.post("/v1/anonymize", response_model=AnonymizeResponse)
async def anonymize(request: AnonymizeRequest) -> AnonymizeResponse:
    service = _anonymizer()
    try:
        result = await asyncio.to_thread(service.anonymize, request.text)
    except ConfigurationError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    logger.debug("anonymized %d chars with %s (%d entities)", len(request.text), result.source, len(result.entities))
    return AnonymizeResponse(
        anonymized=result.anonymized,
        mappings=result.mappings,
        source=result.source,
        entities=_entity_items(result.entities),
    )


@app.post("/v1/reidentify", response_model=ReidentifyResponse)
async def reidentify(request: ReidentifyRequest) -> ReidentifyResponse:
    result = _anonymizer().reidentify(request.text, request.mappings)
    return ReidentifyResponse(text=result.text, replaced=result.replaced)


@app.post("/v1/stats", response_model=StatsResponse)
async def stats(request: StatsRequest) -> StatsResponse:
    return StatsResponse(stats=_anonymizer().stats(request.text))


@app.post("/v1/detect", response_model=DetectResponse)
async def detect(request: DetectRequest) -> DetectResponse:
    runtime = _anonymizer().runtime
    if runtime is None:
        raise HTTPException(status_code=503, detail="model runtime is not configured")
    try:
        entities = await asyncio.to_thread(
            runtime.predict_entities,
            request.text,
            request.labels,
            request.threshold,
        )
    except ModelUnavailableError as exc:
        raise HTTPException(status_code=503, detail=f"model unavailable: {exc}") from exc
    except (ExecutionError, ConfigurationError) as exc:
        raise HTTPException(status_code=500, detail=f"detection failed: {exc}") from exc
    return DetectResponse(entities=_entity_items(entities))
