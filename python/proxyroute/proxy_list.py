import json
import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional
from pydantic import ValidationError

from proxyroute.errors import ConfigLoadError
from proxyroute.matcher import compile_pattern
from proxyroute.schemas import ProxyConfig

logger = logging.getLogger("ProxyRoute.ProxyList")


class ProxyConfigList:
    """
    순서가 있는 ProxyConfig 목록. 인덱스 키는 match 문자열입니다.

    resolve() 는 disabled 가 아닌 항목 중 test() 가 처음 True 인 항목을
    반환합니다. 여러 항목의 순위/병합은 하지 않습니다.
    """

    def __init__(self, entries: Optional[Iterable[Any]] = None):
        self._entries: List[ProxyConfig] = []
        self._lock = threading.Lock()
        for entry in entries or []:
            self.add(entry)

    @classmethod
    def load(cls, path: str) -> "ProxyConfigList":
        """
        JSON 파일에서 목록을 로드합니다.
        형식: [ {...}, ... ] 또는 {"proxies": [ {...}, ... ]}
        잘못된 항목은 로그만 남기고 건너뜁니다.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigLoadError(f"Cannot load proxy list {path}: {e}") from e

        if isinstance(data, dict):
            data = data.get("proxies", [])
        if not isinstance(data, list):
            raise ConfigLoadError(f"Proxy list {path} must be a JSON array or {{\"proxies\": [...]}}")

        proxies = cls()
        for index, item in enumerate(data):
            try:
                proxies.add(item)
            except ValidationError as e:
                logger.error(f"Proxy entry #{index} invalid in {path}: {e}")

        logger.info(f"Loaded {len(proxies)} proxy entries from {path}")
        return proxies

    def add(self, entry: Any) -> ProxyConfig:
        if not isinstance(entry, ProxyConfig):
            entry = ProxyConfig.model_validate(entry)
        self._warn_if_invalid(entry)
        with self._lock:
            self._entries.append(entry)
        return entry

    def get(self, match: str) -> Optional[ProxyConfig]:
        for entry in self.snapshot():
            if entry.match == match:
                return entry
        return None

    def remove(self, match: str) -> int:
        """match 가 같은 항목을 모두 제거하고 제거된 개수를 반환"""
        with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.match != match]
            return before - len(self._entries)

    def update(self, match: str, options: Any) -> Optional[ProxyConfig]:
        """match 로 찾은 첫 항목을 options 로 갱신한 새 값으로 교체"""
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.match == match:
                    updated = entry.update(options)
                    self._entries[index] = updated
                    break
            else:
                return None
        if updated.match != match:
            self._warn_if_invalid(updated)
        return updated

    def replace(self, entries: Iterable[Any]):
        fresh = ProxyConfigList(entries)
        with self._lock:
            self._entries = fresh.snapshot()

    def resolve(self, url: Any) -> Optional[ProxyConfig]:
        for entry in self.snapshot():
            if entry.disabled:
                continue
            if entry.test(url):
                return entry
        return None

    def snapshot(self) -> List[ProxyConfig]:
        with self._lock:
            return list(self._entries)

    def to_list(self, redact: bool = False) -> List[Dict[str, Any]]:
        context = {"redact": redact}
        return [entry.model_dump(context=context) for entry in self.snapshot()]

    def _warn_if_invalid(self, entry: ProxyConfig):
        if compile_pattern(entry.match) is None:
            logger.warning(f"Invalid match pattern '{entry.match}' (entry will never match)")

    def __iter__(self) -> Iterator[ProxyConfig]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._entries)
