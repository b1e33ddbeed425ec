import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from store_audit import config
from store_audit.audit_backend import AuditBackend
from store_audit.cloud_connection import CloudConnection
from store_audit.errors import AuditError

logger = logging.getLogger("store_audit")


class Event(BaseModel):
    type: str
    session_id: Optional[str] = None
    admin_token: Optional[str] = None
    payload: Optional[Any] = None
    timestamp: Optional[str] = None


def create_app(backend: Optional[AuditBackend] = None, run_persistence_loop: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.backend is None:
            app.state.backend = AuditBackend(connection=CloudConnection())
        task = None
        if run_persistence_loop:
            task = asyncio.create_task(app.state.backend.handoff.run())
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(lifespan=lifespan)
    app.state.backend = backend

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/events")
    async def send_event(event: Event):
        request_data = event.model_dump()
        if request_data.get("payload") is not None and not isinstance(request_data["payload"], dict):
            raise HTTPException(status_code=422, detail="payload must be an object")
        return await asyncio.to_thread(app.state.backend._process_request_data, request_data)

    @app.get("/audits/{folio}/report.pdf")
    async def report_pdf(folio: str):
        backend: AuditBackend = app.state.backend
        try:
            filename, pdf = await asyncio.to_thread(backend.render_pdf, folio)
        except AuditError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return Response(
            content=pdf,
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/audits/export.csv")
    async def export_csv(
        scope: str = "filtered",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        store_query: Optional[str] = None,
        status: Optional[str] = None,
        x_admin_token: Optional[str] = Header(default=None),
    ):
        backend: AuditBackend = app.state.backend
        if not backend.is_admin(x_admin_token):
            raise HTTPException(status_code=401, detail="Acceso restringido a administradores.")
        filters = {
            "scope": scope,
            "start_date": start_date,
            "end_date": end_date,
            "store_query": store_query,
            "status": status,
        }
        try:
            result = await asyncio.to_thread(backend.export_csv, filters)
        except AuditError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return Response(
            content=result["content"],
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{result["filename"]}"'},
        )

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
