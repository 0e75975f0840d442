"""
FastAPI + Uvicorn ASGI application — the engine over HTTP.

Endpoints:
  POST /parse    one file (+ password)            → ParseResult JSON
  POST /chains   one or more files (+ password)   → chains of certificate summaries
  POST /bundle   files, optional key file, index  → text/plain PEM bundle
  GET  /health   liveness probe
  GET  /info     application metadata

Decoding is CPU-bound, so engine calls run in a worker thread to keep the
event loop free. A wrong PKCS#12 password is not an HTTP error: the
response carries needs_password=true and the client re-submits.

Entry point: uvicorn certchain.asgi:app --host 0.0.0.0 --port 8000
(or `certchain serve`).
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse
from railway import FailureDescription
from railway.result import Result

from certchain import __version__
from certchain.config import AppSettings
from certchain.domain.bundle import pair_keys_by_source
from certchain.domain.models import CertificateChain, ParseResult
from certchain.engine import CertificateEngine
from certchain.main import configure_structlog

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    FastAPI lifespan context manager — runs on startup and shutdown.

    Startup: load settings and construct the engine once for all requests.
    """
    log.info("asgi.startup")
    try:
        settings = AppSettings()
    except Exception as e:
        log.error("asgi.startup_error", error=f"Configuration error: {e}")
        raise

    configure_structlog(settings.log_level)
    app.state.settings = settings
    app.state.engine = CertificateEngine.from_settings(settings)

    log.info(
        "asgi.startup_complete",
        version=__version__,
        match_key_identifiers=settings.chain.match_key_identifiers,
        max_upload_bytes=settings.api.max_upload_bytes,
    )
    yield
    log.info("asgi.shutdown_complete")


app = FastAPI(
    title="certchain",
    description="TLS certificate decoding and chain reconstruction",
    version=__version__,
    lifespan=lifespan,
)


# ─────────────────────── Helpers ───────────────────────


def _failure_response(error: FailureDescription) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"status": "failed", "error_code": error.code.value, "message": error.message},
    )


async def _read_upload(upload: UploadFile, limit: int) -> bytes:
    data = await upload.read(limit + 1)
    if len(data) > limit:
        raise HTTPException(
            status_code=413,
            detail=f"{upload.filename or 'upload'} is larger than {limit} bytes",
        )
    return data


async def _parse_upload(
    request: Request, upload: UploadFile, password: str | None
) -> tuple[str, Result[ParseResult]]:
    engine: CertificateEngine = request.app.state.engine
    settings: AppSettings = request.app.state.settings
    name = upload.filename or "upload"
    data = await _read_upload(upload, settings.api.max_upload_bytes)
    result = await asyncio.to_thread(engine.parse, data, name, password, name)
    return name, result


async def _parse_uploads(
    request: Request, uploads: list[UploadFile], password: str | None
) -> tuple[ParseResult, list[dict[str, str]], list[str]]:
    """Merge every upload; returns (merged, failures, files needing a password)."""
    merged = ParseResult()
    failures: list[dict[str, str]] = []
    locked: list[str] = []
    for upload in uploads:
        name, result = await _parse_upload(request, upload, password)
        if result.is_failure():
            error = result.error()
            failures.append({"file": name, "error_code": error.code.value, "message": error.message})
            continue
        parsed = result.value()
        if parsed.needs_password:
            locked.append(name)
        merged.certificates.extend(parsed.certificates)
        merged.private_keys.extend(parsed.private_keys)
        merged.warnings.extend(f"{name}: {warning}" for warning in parsed.warnings)
    return merged, failures, locked


def _chain_document(chain: CertificateChain) -> dict[str, Any]:
    return {
        "complete": chain.is_complete,
        "common_names": chain.common_names(),
        "certificates": [record.summary() for record in chain],
    }


# ─────────────────────── Endpoints ───────────────────────


@app.post("/parse")
async def parse(
    request: Request,
    file: UploadFile = File(...),
    password: str | None = Form(None),
) -> JSONResponse:
    """
    Decode one uploaded file.

    Returns 200 with the ParseResult (including PEM text) on success, also
    when the container needs a password. Returns 413 when the upload is too
    large and 422 with the error code when the input cannot be read.
    """
    _, result = await _parse_upload(request, file, password)
    return result.either(
        lambda parsed: JSONResponse(status_code=200, content=parsed.summary(include_pem=True)),
        _failure_response,
    )


@app.post("/chains")
async def chains(
    request: Request,
    files: list[UploadFile] = File(...),
    password: str | None = Form(None),
) -> JSONResponse:
    """Reconstruct chains from all certificates found in the uploads."""
    engine: CertificateEngine = request.app.state.engine
    merged, failures, locked = await _parse_uploads(request, files, password)
    built = engine.build_chains(merged.certificates)
    return JSONResponse(
        status_code=200,
        content={
            "chains": [_chain_document(chain) for chain in built],
            "warnings": merged.warnings,
            "failures": failures,
            "needs_password": locked,
        },
    )


@app.post("/bundle")
async def bundle(
    request: Request,
    files: list[UploadFile] = File(...),
    key: UploadFile | None = File(None),
    chain: int = Form(0),
    password: str | None = Form(None),
) -> PlainTextResponse:
    """
    Return chain `chain` as a PEM bundle, with a private key appended.

    The key comes from the `key` upload when given, otherwise from the
    upload that carried the chain's leaf certificate.
    """
    engine: CertificateEngine = request.app.state.engine
    merged, failures, locked = await _parse_uploads(request, files, password)
    if failures or locked:
        raise HTTPException(
            status_code=422,
            detail={"failures": failures, "needs_password": locked},
        )

    built = engine.build_chains(merged.certificates)
    if not 0 <= chain < len(built):
        raise HTTPException(status_code=404, detail=f"no chain {chain} ({len(built)} found)")
    selected = built[chain]

    if key is not None:
        key_result, key_failures, _ = await _parse_uploads(request, [key], password)
        if key_failures or not key_result.private_keys:
            raise HTTPException(status_code=422, detail="no private key in the key upload")
        private_key = key_result.private_keys[0]
    else:
        private_key = pair_keys_by_source([selected.leaf], merged.private_keys)[0][1]

    log.info("bundle.served", chain=chain, certificates=len(selected), with_key=private_key is not None)
    return PlainTextResponse(engine.bundle(selected, private_key) + "\n")


@app.get("/health")
async def health(request: Request) -> JSONResponse:
    """Liveness probe: 200 once the engine is constructed, 503 before."""
    if getattr(request.app.state, "engine", None) is None:
        return JSONResponse(status_code=503, content={"status": "unhealthy", "reason": "engine not ready"})
    return JSONResponse(status_code=200, content={"status": "healthy"})


@app.get("/info")
async def info(request: Request) -> dict[str, Any]:
    """Application metadata, used for debugging and monitoring."""
    settings: AppSettings | None = getattr(request.app.state, "settings", None)
    return {
        "name": "certchain",
        "version": __version__,
        "match_key_identifiers": settings.chain.match_key_identifiers if settings else None,
        "max_upload_bytes": settings.api.max_upload_bytes if settings else None,
    }
