from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import FamilyScopeError, ValidationFailed
from .routes import children as children_routes
from .routes import events as events_routes
from .routes import journeys as journey_routes

logger = logging.getLogger(__name__)

app = FastAPI(
    title="FamilyScope API",
    version="0.1.0",
    description="Family-scoped records for children, skill journeys, schedules and stories",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(children_routes.router)
app.include_router(journey_routes.router)
app.include_router(events_routes.router)


@app.exception_handler(FamilyScopeError)
async def familyscope_error_handler(request: Request, exc: FamilyScopeError) -> JSONResponse:
    headers = {"Retry-After": "1"} if exc.retriable else None
    if exc.status_code >= 500:
        logger.warning(
            "request failed",
            extra={"path": request.url.path, "error": type(exc).__name__, "message": exc.message},
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail()}, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        fields[".".join(loc) or "payload"] = error.get("msg", "invalid")
    return JSONResponse(status_code=422, content={"detail": ValidationFailed(fields).detail()})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
