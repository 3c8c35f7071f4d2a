# bartok/server.py
"""
bartok HTTP server - FastAPI surface over the barcode token lifecycle.
"""
from __future__ import annotations
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from . import __version__
from .barcode_tokens import get_manager
from .config import SERVER_HOST, SERVER_PORT
from .errors import RenderError, StoreUnavailable
from .lifecycle import TokenLifecycleManager
from .render import render_data_uri, render_png
from .utils import logger, sanitize_subject_id

app = FastAPI(title="bartok", version=__version__)


@app.exception_handler(StoreUnavailable)
async def _store_unavailable(request: Request, exc: StoreUnavailable):
    logger.error("Token store unavailable during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Token store unavailable"})


def _subject(subject_id: str) -> str:
    try:
        return sanitize_subject_id(subject_id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.post("/barcodes/{subject_id}", status_code=201)
def issue_barcode(subject_id: str, manager: TokenLifecycleManager = Depends(get_manager)):
    """
    Issues a new barcode for the subject. Any previous barcode is replaced.
    """
    token = manager.issue(_subject(subject_id))
    return {
        "subject_id": token.subject,
        "code": token.code,
        "ttl_seconds": token.ttl_seconds,
        "expires_at": token.expires_at.isoformat(),
    }


@app.get("/barcodes/{subject_id}")
def show_barcode(subject_id: str, manager: TokenLifecycleManager = Depends(get_manager)):
    """
    Returns the subject's barcode state, with an inline PNG while it is active.
    A rendering failure leaves the token untouched and returns no image.
    """
    subject = _subject(subject_id)
    record = manager.get(subject)
    if record is None:
        raise HTTPException(status_code=404, detail="No barcode for subject")

    body: Dict[str, Any] = {
        "subject_id": subject,
        "status": record.status,
        "ttl_seconds": record.ttl_seconds,
        "image": None,
    }
    if not record.is_used and record.code:
        try:
            body["image"] = render_data_uri(record.code)
        except RenderError as e:
            logger.error("Rendering barcode for %s failed: %s", subject, e)
    return body


@app.get("/barcodes/{subject_id}/image")
def barcode_image(subject_id: str, manager: TokenLifecycleManager = Depends(get_manager)):
    subject = _subject(subject_id)
    record = manager.get(subject)
    if record is None or record.is_used or not record.code:
        raise HTTPException(status_code=404, detail="No active barcode for subject")
    try:
        png = render_png(record.code)
    except RenderError as e:
        logger.error("Rendering barcode for %s failed: %s", subject, e)
        raise HTTPException(status_code=500, detail="Barcode rendering failed")
    return Response(content=png, media_type="image/png", headers={"Cache-Control": "no-store"})


@app.post("/barcodes/{subject_id}/consume", status_code=204)
def consume_barcode(subject_id: str, manager: TokenLifecycleManager = Depends(get_manager)):
    """Marks the barcode as used. Consuming twice, or after expiry, is not an error."""
    manager.consume(_subject(subject_id))
    return Response(status_code=204)


@app.get("/barcodes/{subject_id}/valid")
def barcode_valid(subject_id: str, manager: TokenLifecycleManager = Depends(get_manager)):
    subject = _subject(subject_id)
    return {"subject_id": subject, "valid": manager.validate(subject)}


@app.get("/health")
def health(manager: TokenLifecycleManager = Depends(get_manager)):
    ok = manager.store.ping()
    return {"status": "ok" if ok else "degraded", "store": ok}


def run():
    import uvicorn
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT, log_config=None)

if __name__ == "__main__":
    run()
