import base64
import logging
from typing import Any, List, Optional, Tuple
from mitmproxy import http
from mitmproxy.connection import Server

from proxyroute.matcher import ALLOWED_PROTOCOLS
from proxyroute.proxy_list import ProxyConfigList
from proxyroute.url import Url

logger = logging.getLogger("ProxyRoute.Pipeline")

DEFAULT_PORTS = {"http": 80, "https": 443}
METADATA_KEY = "proxyroute"

UpstreamSpec = Tuple[str, Tuple[str, int]]


def upstream_address(server: Url) -> Tuple[str, int]:
    """프록시 서버 Url -> mitmproxy 주소 튜플 (IPv6 대괄호 제거)"""
    host = server.host.strip("[]")
    port = server.port or DEFAULT_PORTS.get(server.protocol or "http", 80)
    return host, port


def proxy_authorization(server: Url) -> Optional[str]:
    """server 에 사용자 정보가 있으면 Basic Proxy-Authorization 값을 만듭니다."""
    if not server.username:
        return None
    credentials = f"{server.username}:{server.password or ''}"
    token = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def _as_spec(via: Any) -> Optional[UpstreamSpec]:
    if via is None:
        return None
    scheme, address = via
    return scheme, tuple(address)


def reroute(flow: http.HTTPFlow, via: Optional[UpstreamSpec]) -> bool:
    """
    flow 의 업스트림을 via 로 지정합니다 (None 이면 직접 연결).
    이미 열린 연결은 via 를 바꿔도 그대로 재사용되므로,
    경로가 달라지면 새 Server 객체로 교체하고 True 를 반환합니다.
    """
    replaced = False
    already_open = flow.server_conn.timestamp_start is not None
    if already_open and _as_spec(flow.server_conn.via) != via:
        flow.server_conn = Server(address=flow.server_conn.address)
        replaced = True
    flow.server_conn.via = via
    return replaced


class ProxyHandler:
    def process(self, flow: http.HTTPFlow, context: dict) -> bool:
        return True

class SchemeFilter(ProxyHandler):
    def process(self, flow: http.HTTPFlow, context: dict) -> bool:
        # http/https 외의 흐름은 라우팅 대상이 아님
        return flow.request.scheme in ALLOWED_PROTOCOLS

class UpstreamSelector(ProxyHandler):
    def __init__(self, proxies: ProxyConfigList):
        self.proxies = proxies

    def process(self, flow: http.HTTPFlow, context: dict) -> bool:
        entry = self.proxies.resolve(flow.request.url)
        context['upstream'] = entry
        return entry is not None

class UpstreamRouter(ProxyHandler):
    """선택된 항목의 server 로 flow 를 보냅니다."""

    def process(self, flow: http.HTTPFlow, context: dict) -> bool:
        entry = context.get('upstream')
        if entry is None or entry.server.is_empty:
            return False

        scheme = "https" if entry.server.protocol == "https" else "http"
        reroute(flow, (scheme, upstream_address(entry.server)))

        # Plain http 는 absolute-form 으로 프록시에 전달되므로 요청 자체에 인증 헤더.
        # https 는 CONNECT 단계에서 ConnectAuthenticator 가 처리합니다.
        authorization = proxy_authorization(entry.server)
        if authorization and flow.request.scheme == "http":
            flow.request.headers["Proxy-Authorization"] = authorization

        flow.metadata[METADATA_KEY] = {
            "match": entry.match,
            "server": entry.server.redacted(),
            "tunnel": entry.tunnel,
        }
        context['routed'] = True
        return True

class ConnectAuthenticator(ProxyHandler):
    """
    업스트림 프록시로 보내는 CONNECT 요청에 해당 프록시의 인증 정보를 붙입니다.
    CONNECT flow 의 server_conn 은 프록시 자신이므로 주소로 항목을 찾습니다.
    """
    def __init__(self, proxies: ProxyConfigList):
        self.proxies = proxies

    def process(self, flow: http.HTTPFlow, context: dict) -> bool:
        address = flow.server_conn.address
        if not address:
            return False
        address = tuple(address)

        for entry in self.proxies:
            if entry.disabled or entry.server.is_empty:
                continue
            if upstream_address(entry.server) != address:
                continue
            authorization = proxy_authorization(entry.server)
            if authorization:
                flow.request.headers["Proxy-Authorization"] = authorization
                context['authorized'] = entry
                return True
        return False


class ProxyPipeline:
    def __init__(self, handlers: List[ProxyHandler]):
        self.handlers = handlers

    def run(self, flow: http.HTTPFlow, context: Optional[dict] = None) -> dict:
        """핸들러를 순서대로 실행하고, False 를 반환하는 핸들러에서 중단"""
        if context is None:
            context = {}
        for handler in self.handlers:
            if not handler.process(flow, context):
                break
        return context


def build_routing_pipeline(proxies: ProxyConfigList) -> ProxyPipeline:
    return ProxyPipeline([
        SchemeFilter(),
        UpstreamSelector(proxies),
        UpstreamRouter(),
    ])


def build_connect_pipeline(proxies: ProxyConfigList) -> ProxyPipeline:
    return ProxyPipeline([ConnectAuthenticator(proxies)])
