import threading
import logging
from typing import Optional
from mitmproxy.tools.dump import DumpMaster
from mitmproxy import options

from proxyroute import api_server
from proxyroute.api_server import run_api_server
from proxyroute.proxy_list import ProxyConfigList
from proxyroute.proxy_server import ProxyRouteAddon


class SystemOrchestrator:
    """
    Resolve API 서버(스레드)와 mitmproxy 를 함께 기동합니다.
    두 쪽 모두 같은 ProxyConfigList 를 사용합니다.
    """
    def __init__(self, api_port: int, proxy_port: Optional[int], proxies: ProxyConfigList):
        self.api_port = api_port
        self.proxy_port = proxy_port
        self.proxies = proxies
        self.logger = logging.getLogger("ProxyRoute.Orchestrator")
        self.api_thread = None
        self.mitm_master = None

    def start_api_server(self):
        """API 서버를 별도 스레드로 실행"""
        api_server.proxy_list.replace(self.proxies.snapshot())
        self.api_thread = threading.Thread(
            target=run_api_server,
            args=(self.api_port,),
            daemon=True
        )
        self.api_thread.start()
        self.logger.info(f"API Server started on port {self.api_port}")

    def _proxy_mode(self) -> str:
        """
        mitmproxy 는 upstream 모드에서만 flow 별 via 변경을 따릅니다.
        첫 번째 활성 항목의 server 를 기본 업스트림으로 사용합니다.
        """
        for entry in self.proxies:
            if not entry.disabled and not entry.server.is_empty:
                return f"upstream:{entry.server.protocol or 'http'}://{entry.server.remote}"
        self.logger.warning("[Orchestrator] No enabled proxy server configured. Running in regular mode.")
        return "regular"

    async def run_mitmproxy(self):
        """Mitmproxy 실행 (Asyncio Event Loop)"""
        opts = options.Options(
            listen_host='127.0.0.1',
            listen_port=self.proxy_port,
            mode=[self._proxy_mode()],
        )
        self.mitm_master = DumpMaster(opts, with_termlog=False, with_dumper=False)
        self.mitm_master.addons.add(ProxyRouteAddon(self.proxies))

        self.logger.info(f"Mitmproxy running on port {self.proxy_port}")
        await self.mitm_master.run()

    def shutdown(self):
        """안전한 종료 절차"""
        self.logger.info("Shutting down...")
        if self.mitm_master:
            self.mitm_master.shutdown()
