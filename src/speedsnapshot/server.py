"""
Backend for the comparison engine.

Endpoints:
    GET  /psi-proxy    -- re-issue a PSI call with the server-held API key
    POST /save_report  -- store one summary row
    GET  /get_report   -- look up stored rows

Run with: uvicorn speedsnapshot.server:app --port 8000
"""

import logging
import re
from functools import lru_cache
from typing import AsyncIterator, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from speedsnapshot import __version__
from speedsnapshot.config import settings
from speedsnapshot.database import AbstractReportStore, get_db_client
from speedsnapshot.external.pagespeed_insights import API_URL

logger = logging.getLogger(__name__)

PROXY_TIMEOUT = 300.0
_HTTP_URL_RE = re.compile(r'^https?://', re.IGNORECASE)

app = FastAPI(
    title="Speed Snapshot API",
    description="PSI proxy and report storage for with/without comparisons",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


class ReportIn(BaseModel):
    """Summary row posted by a comparison run."""
    group_id: Optional[str] = None
    case_id: Optional[str] = None
    url: Optional[str] = None
    device: Optional[str] = None
    perf_with: Optional[int] = None
    perf_without: Optional[int] = None
    fcp_with_s: Optional[float] = None
    fcp_without_s: Optional[float] = None
    lcp_with_s: Optional[float] = None
    lcp_without_s: Optional[float] = None
    tbt_with_ms: Optional[float] = None
    tbt_without_ms: Optional[float] = None
    cls_with: Optional[float] = None
    cls_without: Optional[float] = None


@lru_cache(maxsize=1)
def get_store() -> AbstractReportStore:
    return get_db_client()


def get_api_key() -> Optional[str]:
    return settings.PSI_API_KEY


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=PROXY_TIMEOUT, follow_redirects=True) as client:
        yield client


@app.get("/", tags=["Info"])
def root():
    return {
        "app_name": "Speed Snapshot API",
        "version": __version__,
        "endpoints": ["/psi-proxy", "/save_report", "/get_report"],
    }


@app.get("/psi-proxy", tags=["PSI"])
async def psi_proxy(
    url: Optional[str] = None,
    strategy: str = "mobile",
    api_key: Optional[str] = Depends(get_api_key),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Forward a PSI request; the upstream body and status pass through."""
    if not url or not _HTTP_URL_RE.match(url):
        return JSONResponse({"error": "Invalid or missing URL"}, status_code=status.HTTP_400_BAD_REQUEST)

    if not api_key:
        return JSONResponse(
            {"error": "Server not configured with API key"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    params = {
        'url': url,
        'strategy': strategy,
        'key': api_key,
        'category': 'performance',
        'locale': 'en',
    }

    try:
        upstream = await client.get(API_URL, params=params)
    except httpx.HTTPError as e:
        detail = str(e) if str(e) else type(e).__name__
        logger.error(f"[PSI-PROXY] Upstream request failed for {url}: {detail}")
        return JSONResponse(
            {"error": "Upstream request failed", "detail": detail},
            status_code=status.HTTP_502_BAD_GATEWAY,
        )

    logger.info(f"[PSI-PROXY] {strategy.upper()} {url} -> {upstream.status_code}")
    body = upstream.content or b'{"error": "Empty response from PSI"}'
    return Response(content=body, status_code=upstream.status_code, media_type="application/json")


@app.post("/save_report", tags=["Reports"])
def save_report(report: ReportIn, store: AbstractReportStore = Depends(get_store)):
    row = report.model_dump()
    for key in ('url', 'device', 'group_id'):
        if not row.get(key):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Missing field: {key}")

    report_id = store.save_report(row)
    return {"ok": True, "id": report_id}


@app.get("/get_report", tags=["Reports"])
def get_report(
    id: Optional[int] = None,
    url: Optional[str] = None,
    case_id: Optional[str] = None,
    group_id: Optional[str] = None,
    limit: int = Query(10, ge=1),
    store: AbstractReportStore = Depends(get_store),
):
    rows = store.query_reports(id=id, url=url, case_id=case_id, group_id=group_id, limit=limit)

    if id is not None and not group_id:
        if not rows:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
        return rows[0]
    return rows
