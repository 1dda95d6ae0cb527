import logging
from mitmproxy import http

from proxyroute.proxy_list import ProxyConfigList
from proxyroute.proxy_pipeline import build_connect_pipeline, build_routing_pipeline, reroute


class ProxyRouteAddon:
    """
    mitmproxy addon: 요청마다 ProxyConfigList 에서 업스트림 프록시를 선택합니다.
    매칭되는 항목이 없으면 직접 연결(via=None)로 내보냅니다.
    """
    def __init__(self, proxies: ProxyConfigList):
        self.proxies = proxies
        self.pipeline = build_routing_pipeline(proxies)
        self.connect_pipeline = build_connect_pipeline(proxies)
        self.logger = logging.getLogger("ProxyRoute.Addon")
        self.logger.info(f"ProxyRoute addon initialized with {len(proxies)} entries")

    def request(self, flow: http.HTTPFlow):
        current_url = flow.request.url
        try:
            context = self.pipeline.run(flow)
        except Exception as e:
            # 라우팅 실패가 프록시 전체를 멈추게 해서는 안 됨
            self.logger.error(f"Routing error for {current_url}: {e}")
            return

        if context.get('routed'):
            entry = context['upstream']
            tunnel_tag = "[TUNNEL]" if entry.tunnel else "[FORWARD]"
            self.logger.debug(f"{tunnel_tag} {current_url[:80]} -> {entry.server.redacted()}")
        else:
            reroute(flow, None)

    def http_connect_upstream(self, flow: http.HTTPFlow):
        """업스트림 프록시로 나가는 CONNECT 에 항목별 Proxy-Authorization 추가"""
        try:
            context = self.connect_pipeline.run(flow)
        except Exception as e:
            self.logger.error(f"CONNECT authorization error for {flow.request.host}: {e}")
            return

        entry = context.get('authorized')
        if entry is not None:
            self.logger.debug(f"[CONNECT] {flow.request.host} via {entry.server.redacted()}")
