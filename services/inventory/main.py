"""Inventory service API built with FastAPI.

This module exposes the reservation contract consumed by the order service:
a bulk availability check and an all-or-nothing bulk stock reduction.
Validation is performed with Pydantic models, while persistence and
locking are delegated to the SQLAlchemy-backed ``repo.InventoryRepo``.
Error responses carry a top-level ``message`` field.
"""

import logging
import os
import time
import uuid
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import InventoryRepo, engine, init_db

app = FastAPI(title="Inventory Service")

# logger JSON
logger = logging.getLogger("inventory")
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


class BookQuantities(BaseModel):
    """Request body shared by the bulk endpoints.

    Attributes:
        book_quantities: Mapping of positive book id to positive quantity
            (``bookQuantities``).
    """

    book_quantities: Dict[int, int] = Field(alias="bookQuantities", min_length=1)

    @field_validator("book_quantities")
    @classmethod
    def positive(cls, v: Dict[int, int]) -> Dict[int, int]:
        if any(b <= 0 or q <= 0 for b, q in v.items()):
            raise ValueError("Book ids and quantities must be positive")
        return v


class AvailabilityResponse(BaseModel):
    availabilityMap: Dict[int, bool]
    allAvailable: bool
    message: str


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    message = "; ".join(str(e["msg"]) for e in exc.errors()) or "Invalid request"
    return JSONResponse(status_code=400, content={"message": message})


@app.get("/health")
def health():
    """Liveness/health probe endpoint."""
    return {"ok": True}


@app.post("/api/v1/inventory/bulk/check-availability", response_model=AvailabilityResponse)
def check_bulk_availability(req: BookQuantities):
    """Report availability for each requested book without reserving."""
    availability = InventoryRepo().check_bulk(req.book_quantities)
    all_available = all(availability.values())
    message = (
        "All books are available in required quantities"
        if all_available
        else "Some books are not available in required quantities"
    )
    return AvailabilityResponse(availabilityMap=availability, allAvailable=all_available, message=message)


@app.patch("/api/v1/inventory/bulk/reduce")
def reduce_bulk_inventory(req: BookQuantities):
    """Reduce stock for every requested book, or for none.

    Returns:
        dict: ``{"reduced": true}`` on success.
        400 with ``message`` and ``unavailableBookIds`` when any book is
        short; no stock is changed in that case.
    """
    short = InventoryRepo().reduce_bulk(req.book_quantities)
    if short:
        logger.warning("Cannot reduce inventory", extra={"unavailable_book_ids": short})
        return JSONResponse(
            status_code=400,
            content={"message": f"Insufficient stock for books: {short}", "unavailableBookIds": short},
        )
    return {"reduced": True}


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
        port=int(os.getenv("PORT", "9001")),
        workers=int(os.getenv("UVICORN_WORKERS", str(max(2, (os.cpu_count() or 1))))),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )
