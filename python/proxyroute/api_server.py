import logging
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from proxyroute.matcher import UrlMatcher, compile_pattern
from proxyroute.proxy_list import ProxyConfigList
from proxyroute.schemas import (
    PatternTestRequest,
    PatternTestResponse,
    ProxyListResponse,
    ResolveRequest,
    ResolveResponse,
)

logger = logging.getLogger("ProxyRoute.API")

app = FastAPI(title="proxyroute")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Orchestrator 가 기동 시 replace() 로 채웁니다.
proxy_list = ProxyConfigList()


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "proxyroute", "proxies": len(proxy_list)}


@app.post("/v1/resolve", response_model=ResolveResponse)
async def resolve_proxy(req: ResolveRequest):
    """URL 에 적용할 첫 번째 활성 프록시 항목을 반환"""
    entry = proxy_list.resolve(req.url)
    if entry is None:
        return ResolveResponse(matched=False)
    return ResolveResponse(
        matched=True,
        match=entry.match,
        server=entry.server.redacted() or None,
        tunnel=entry.tunnel,
    )


@app.post("/v1/test", response_model=PatternTestResponse)
async def test_pattern(req: PatternTestRequest):
    valid = compile_pattern(req.pattern) is not None
    if not valid:
        logger.info(f"Rejected invalid match pattern: {req.pattern!r}")
    return PatternTestResponse(matched=UrlMatcher.test(req.pattern, req.url), valid=valid)


@app.get("/v1/proxies", response_model=ProxyListResponse)
async def list_proxies():
    return ProxyListResponse(proxies=proxy_list.to_list(redact=True))


def run_api_server(port: int):
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="info")
