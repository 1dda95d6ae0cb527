import logging
import re
import threading
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Dict, FrozenSet, Optional, Union

from proxyroute.errors import UrlParseError
from proxyroute.url import Url

logger = logging.getLogger("ProxyRoute.Matcher")

MATCH_ALL = "*"
MATCH_ALL_URLS = "<all_urls>"
ALLOWED_PROTOCOLS = ("http", "https")
SCHEME_SEPARATOR = "://"
SUFFIX_HOST_PREFIX = "*."


# -------------------------------------------------------------------------
# [Host Classification] AnyHost | SuffixHost | ExactHost
# -------------------------------------------------------------------------

@dataclass(frozen=True)
class AnyHost:
    """`*` - 모든 호스트 허용"""

    def matches(self, remote: str) -> bool:
        return True


@dataclass(frozen=True)
class SuffixHost:
    """`*.example.com` - 도메인 자신과 모든 서브도메인"""
    domain: str

    def matches(self, remote: str) -> bool:
        return remote == self.domain or remote.endswith("." + self.domain)


@dataclass(frozen=True)
class ExactHost:
    """`example.com[:port]` - remote 문자열 완전 일치"""
    remote: str

    def matches(self, remote: str) -> bool:
        return remote == self.remote


HostSpec = Union[AnyHost, SuffixHost, ExactHost]


def classify_host(host: str) -> HostSpec:
    if host == MATCH_ALL:
        return AnyHost()
    if host.startswith(SUFFIX_HOST_PREFIX):
        return SuffixHost(host[len(SUFFIX_HOST_PREFIX):])
    return ExactHost(host)


def glob_to_regex(glob: str) -> re.Pattern:
    """
    Glob -> anchored regex.
    `*` 는 0개 이상의 임의 문자, `?` 는 정확히 1개의 문자.
    나머지 문자는 정규식 메타문자를 포함해 모두 이스케이프합니다.

    예: "/api/*" 는 "/api/" 로 시작하는 모든 경로, "/v?" 는 "/v1", "/v2" ...
    """
    parts = []
    for char in glob:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile(r"\A" + "".join(parts) + r"\Z")


@dataclass(frozen=True)
class CompiledPattern:
    source: str
    protocols: FrozenSet[str]
    host: str
    path: re.Pattern

    @property
    def is_all_urls(self) -> bool:
        return self.source == MATCH_ALL_URLS

    @cached_property
    def host_spec(self) -> HostSpec:
        # 호스트는 원본 문자열로 보관하고, 첫 매칭 시점에 분류합니다.
        return classify_host(self.host)


ALL_URLS = CompiledPattern(
    source=MATCH_ALL_URLS,
    protocols=frozenset(ALLOWED_PROTOCOLS),
    host=MATCH_ALL,
    path=glob_to_regex(MATCH_ALL),
)


class PatternCompiler:
    """
    Match pattern 문자열을 CompiledPattern 으로 변환합니다.
    문법에 맞지 않으면 예외 대신 None 을 반환합니다.

        pattern := "<all_urls>" | scheme "://" host "/" path
        scheme  := "*" | "http" | "https"
        host    := "*" | "*." domain | domain [ ":" port ]
    """

    @staticmethod
    def compile(match: Any) -> Optional[CompiledPattern]:
        if not isinstance(match, str) or not match:
            return None

        if match == MATCH_ALL_URLS:
            return ALL_URLS

        scheme, separator, rest = match.partition(SCHEME_SEPARATOR)
        protocols = PatternCompiler._parse_scheme(scheme)
        if not separator or protocols is None:
            logger.debug(f"Invalid scheme in match pattern: {match!r}")
            return None

        host, slash, path = rest.partition("/")
        if not slash or not PatternCompiler._is_valid_host(host):
            logger.debug(f"Invalid host/path in match pattern: {match!r}")
            return None

        return CompiledPattern(
            source=match,
            protocols=protocols,
            host=host,
            path=glob_to_regex("/" + path),
        )

    @staticmethod
    def _parse_scheme(scheme: str) -> Optional[FrozenSet[str]]:
        if scheme == MATCH_ALL:
            return frozenset(ALLOWED_PROTOCOLS)
        if scheme in ALLOWED_PROTOCOLS:
            return frozenset([scheme])
        return None

    @staticmethod
    def _is_valid_host(host: str) -> bool:
        if host == MATCH_ALL:
            return True
        if host.startswith(SUFFIX_HOST_PREFIX):
            host = host[len(SUFFIX_HOST_PREFIX):]
        return bool(host) and MATCH_ALL not in host


class PatternCache:
    """
    raw match 문자열을 키로 하는 컴파일 결과 사이드 캐시.
    잘못된 패턴(None)도 캐시하여 반복 파싱을 피합니다.
    """

    def __init__(self, maxsize: int = 256):
        self.maxsize = maxsize
        self._entries: Dict[str, Optional[CompiledPattern]] = {}
        self._lock = threading.Lock()

    def get(self, match: Any) -> Optional[CompiledPattern]:
        if not isinstance(match, str):
            return None
        if self.maxsize <= 0:
            return PatternCompiler.compile(match)

        with self._lock:
            if match in self._entries:
                return self._entries[match]

        compiled = PatternCompiler.compile(match)

        with self._lock:
            if match not in self._entries and len(self._entries) >= self.maxsize:
                # 가장 먼저 들어온 항목 제거 (dict 삽입 순서)
                self._entries.pop(next(iter(self._entries)))
            self._entries[match] = compiled
        return compiled

    def resize(self, maxsize: int):
        with self._lock:
            self.maxsize = maxsize
            self._entries.clear()

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __contains__(self, match: Any) -> bool:
        return isinstance(match, str) and match in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# Singleton
pattern_cache = PatternCache()


def compile_pattern(match: Any) -> Optional[CompiledPattern]:
    """Cached PatternCompiler.compile."""
    return pattern_cache.get(match)


class UrlMatcher:
    @staticmethod
    def test(pattern: Union[str, CompiledPattern, None], url: Any) -> bool:
        """
        Chrome Extension 스타일 match pattern 으로 URL 을 검사합니다.

        비용이 낮은 순서로 평가하고 실패 즉시 False 를 반환합니다:
        1. <all_urls> 이면 URL 파싱 없이 True
        2. 패턴 컴파일 (캐시 재사용), 잘못된 패턴이면 False
        3. URL 파싱, 실패하면 False
        4. Protocol -> 5. Host -> 6. Path(정규식) 순서로 비교

        어떤 입력에도 예외를 던지지 않습니다 (fail-closed).
        """
        if isinstance(pattern, CompiledPattern):
            compiled = pattern
        elif pattern == MATCH_ALL_URLS:
            return True
        else:
            compiled = compile_pattern(pattern)

        if compiled is None:
            return False
        if compiled.is_all_urls:
            return True

        try:
            parsed = Url.parse(url)
        except UrlParseError:
            return False

        return (UrlMatcher._match_protocol(compiled, parsed.protocol) and
                UrlMatcher._match_host(compiled, parsed.remote) and
                UrlMatcher._match_path(compiled, parsed.path))

    match = test

    @staticmethod
    def _match_protocol(compiled: CompiledPattern, protocol: Optional[str]) -> bool:
        # 패턴이 허용하더라도 허용 프로토콜 목록 밖이면 거부
        return protocol in ALLOWED_PROTOCOLS and protocol in compiled.protocols

    @staticmethod
    def _match_host(compiled: CompiledPattern, remote: str) -> bool:
        return compiled.host_spec.matches(remote)

    @staticmethod
    def _match_path(compiled: CompiledPattern, path: str) -> bool:
        return compiled.path.match(path) is not None
