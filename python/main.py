import argparse
import sys
import os
import asyncio
import logging
import socket
import time
import requests

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from proxyroute.config import Settings
from proxyroute.errors import ConfigLoadError
from proxyroute.matcher import pattern_cache
from proxyroute.orchestrator import SystemOrchestrator
from proxyroute.proxy_list import ProxyConfigList

logger = logging.getLogger("ProxyRoute.Main")


def get_free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('', 0))
        return s.getsockname()[1]

def wait_for_api_server(port, timeout=10):
    url = f"http://127.0.0.1:{port}/health"
    start = time.time()
    while time.time() - start < timeout:
        try:
            resp = requests.get(url, timeout=1)
            if resp.status_code == 200:
                return True
        except requests.RequestException:
            time.sleep(0.5)
    return False

def load_proxies(path: str) -> ProxyConfigList:
    if not os.path.exists(path):
        logger.warning(f"Proxy list {path} not found. Starting with no entries.")
        return ProxyConfigList()
    return ProxyConfigList.load(path)

def check_url(proxies: ProxyConfigList, url: str) -> int:
    """--check: 어떤 항목이 선택되는지 출력"""
    entry = proxies.resolve(url)
    if entry is None:
        print(f"{url} -> DIRECT")
        return 1
    mode = "tunnel" if entry.tunnel else "forward"
    print(f"{url} -> {entry.server.redacted()} ({mode}, match={entry.match})")
    return 0

def main(argv=None):
    settings = Settings.from_env()

    parser = argparse.ArgumentParser(description="Route requests to upstream proxies by URL match pattern")
    parser.add_argument("--config", default=settings.config_path)
    parser.add_argument("--api-port", type=int, required=False, default=settings.api_port)
    parser.add_argument("--proxy-port", type=int, required=False, default=settings.proxy_port)
    parser.add_argument("--no-proxy", action="store_true")
    parser.add_argument("--check", metavar="URL", help="print the proxy selected for URL and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format='%(asctime)s [%(levelname)s] %(name)s - %(message)s'
    )
    pattern_cache.resize(settings.cache_size)

    try:
        proxies = load_proxies(args.config)
    except ConfigLoadError as e:
        logger.error(str(e))
        return 2

    if args.check:
        return check_url(proxies, args.check)

    # 1. Allocate Dynamic Port
    api_port = args.api_port
    if not api_port or api_port <= 0:
        api_port = get_free_port()
    logger.info(f"Allocated API Port: {api_port}")

    use_proxy = not args.no_proxy and args.proxy_port is not None and args.proxy_port > 0
    orchestrator = SystemOrchestrator(
        api_port=api_port,
        proxy_port=args.proxy_port if use_proxy else None,
        proxies=proxies,
    )

    try:
        orchestrator.start_api_server()
        if not wait_for_api_server(api_port):
            logger.error("Failed to start API Server")
            return 1
        logger.info("API Server Online")

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        if use_proxy:
            logger.info(f"System Mode: Routing Proxy Active on {args.proxy_port}")
            loop.run_until_complete(orchestrator.run_mitmproxy())
        else:
            logger.info("System Mode: API Only (Proxy Disabled)")
            loop.run_forever()

    except KeyboardInterrupt:
        logger.info("User interrupted.")
    finally:
        orchestrator.shutdown()
    return 0

if __name__ == "__main__":
    sys.exit(main())
