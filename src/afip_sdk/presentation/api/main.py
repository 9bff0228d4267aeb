import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from afip_sdk.client import AfipClient
from afip_sdk.infrastructure.metrics.pool_collector import build_registry
from afip_sdk.presentation.api.dependencies import close_client, get_client
from afip_sdk.presentation.api.routes.auth import router as auth_router
from afip_sdk.presentation.api.routes.health import router as health_router

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    close_client()


app = FastAPI(title="AFIP SDK", version="0.1.0", lifespan=lifespan)
app.include_router(health_router)
app.include_router(auth_router)


@app.get("/metrics")
def metrics(client: AfipClient = Depends(get_client)) -> Response:  # type: ignore[misc]
    data = generate_latest(build_registry(client.pool))
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
