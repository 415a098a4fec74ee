"""Catalog price-lookup API built with FastAPI.

This module exposes the bulk price endpoint consumed by the order service.
Validation is performed with Pydantic models, while reads are delegated
to the SQLAlchemy-backed ``repo.CatalogRepo``. Error responses carry a
top-level ``message`` field: 400 for malformed id lists, 404 when any
requested book is unknown.
"""

import logging
import os
import time
import uuid
from typing import Dict, List

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import CatalogRepo, engine, init_db

app = FastAPI(title="Catalog Service")

logger = logging.getLogger("catalog")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # wait briefly until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class PriceRequest(BaseModel):
    """Request body for the bulk price endpoint.

    Attributes:
        book_ids: Non-empty list of positive book ids (``bookIds``).
    """

    book_ids: List[int] = Field(alias="bookIds", min_length=1)

    @field_validator("book_ids")
    @classmethod
    def positive(cls, v: List[int]) -> List[int]:
        bad = [b for b in v if b <= 0]
        if bad:
            raise ValueError(f"Invalid book ID in list: {bad[0]}")
        return v


class PriceResponse(BaseModel):
    bookPrice: Dict[int, float]


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    message = "; ".join(str(e["msg"]) for e in exc.errors()) or "Invalid request"
    return JSONResponse(status_code=400, content={"message": message})


@app.get("/health")
def health():
    """Liveness/health probe endpoint."""
    return {"ok": True}


@app.post("/api/v1/book/bulk/prices", response_model=PriceResponse)
def bulk_prices(req: PriceRequest):
    """Return the unit price of every requested book.

    Returns:
        PriceResponse: ``{"bookPrice": {"101": 399.0, ...}}``.
        404 with ``message`` and ``missingBookIds`` when any id is unknown.
    """
    prices = CatalogRepo().prices(req.book_ids)
    missing = sorted(set(b for b in req.book_ids if b not in prices))
    if missing:
        logger.warning("Book ids not found", extra={"missing_book_ids": missing})
        return JSONResponse(
            status_code=404,
            content={"message": f"Book ID not found: {missing}", "missingBookIds": missing},
        )
    return PriceResponse(bookPrice={b: float(p) for b, p in prices.items()})


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "9002")),
        workers=int(os.getenv("UVICORN_WORKERS", str(max(2, (os.cpu_count() or 1))))),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )
