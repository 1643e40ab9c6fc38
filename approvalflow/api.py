"""HTTP surface for starting, signalling and querying instances."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, List, Optional

from fastapi import Body, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse

from .contracts import (
    DeliveryResult,
    DocumentProperties,
    InstancePage,
    InstanceStatus,
    RuntimeState,
)
from .engine import OrchestrationEngine
from .exceptions import ClientError, UnknownInstanceError
from .history.models import HistoryEntry


def create_app(engine: Optional[OrchestrationEngine] = None) -> FastAPI:
    """Build the FastAPI app around an engine.

    Routes:
      POST /instances                          start an instance
      GET  /instances                          list instances
      GET  /instances/{id}                     query status
      GET  /instances/{id}/history             history log
      POST /instances/{id}/signals/{name}      deliver a signal
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # reload stored instances so the directory is complete before serving
        await app.state.engine.recover()
        yield

    app = FastAPI(title="approvalflow", lifespan=lifespan)
    app.state.engine = engine or OrchestrationEngine()

    @app.exception_handler(ClientError)
    async def client_error_handler(request: Request, exc: ClientError) -> JSONResponse:
        code = (
            status.HTTP_404_NOT_FOUND
            if isinstance(exc, UnknownInstanceError)
            else status.HTTP_400_BAD_REQUEST
        )
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    def _engine(request: Request) -> OrchestrationEngine:
        return request.app.state.engine

    @app.post("/instances", status_code=status.HTTP_202_ACCEPTED)
    async def start_instance(request: Request, properties: DocumentProperties) -> dict:
        handle = await _engine(request).start(properties)
        status_url = str(request.url_for("get_instance", instance_id=handle.instance_id))
        return {
            "id": handle.instance_id,
            "statusQueryGetUri": status_url,
            "sendEventPostUri": status_url + "/signals/{signalName}",
        }

    @app.get("/instances", response_model=InstancePage)
    async def list_instances(
        request: Request,
        status_filter: Optional[List[RuntimeState]] = Query(None, alias="status"),
        created_after: Optional[datetime] = Query(None),
        page_size: Optional[int] = Query(None),
        page_token: Optional[str] = Query(None),
    ) -> InstancePage:
        return _engine(request).list_instances(
            statuses=status_filter,
            created_after=created_after,
            page_size=page_size,
            page_token=page_token,
        )

    @app.get("/instances/{instance_id}", response_model=InstanceStatus, name="get_instance")
    async def get_instance(request: Request, instance_id: str) -> InstanceStatus:
        return await _engine(request).query_status(instance_id)

    @app.get("/instances/{instance_id}/history", response_model=List[HistoryEntry])
    async def get_history(request: Request, instance_id: str) -> List[HistoryEntry]:
        return await _engine(request).get_history(instance_id)

    @app.post(
        "/instances/{instance_id}/signals/{signal_name}",
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def send_signal(
        request: Request, instance_id: str, signal_name: str, payload: Any = Body(...)
    ) -> dict:
        result: DeliveryResult = await _engine(request).signal(instance_id, signal_name, payload)
        return {"result": result.value}

    return app
