from typing import Any, Dict, List, Mapping, Optional
from pydantic import BaseModel, ConfigDict, Field, FieldSerializationInfo, field_serializer, field_validator

from proxyroute.matcher import MATCH_ALL_URLS, CompiledPattern, UrlMatcher, compile_pattern
from proxyroute.url import Url

# -------------------------------------------------------------------------
# [Proxy Configuration Schemas]
# -------------------------------------------------------------------------

class ProxyConfig(BaseModel):
    """
    URL match 와 연결된 프록시 설정 한 건.
    불변 값이며, update() 는 새 인스턴스를 반환합니다.
    """
    model_config = ConfigDict(frozen=True)

    match: str = MATCH_ALL_URLS
    server: Url = Field(default_factory=Url)
    tunnel: bool = False
    disabled: bool = False

    @field_validator("server", mode="before")
    @classmethod
    def _empty_server(cls, value: Any) -> Any:
        if value is None or value == "":
            return Url()
        return value

    @field_serializer("server")
    def _dump_server(self, server: Url, info: FieldSerializationInfo) -> str:
        # model_dump(context={"redact": True}) : API 응답용, 비밀번호 마스킹
        if info.context and info.context.get("redact"):
            return server.redacted()
        return str(server)

    @property
    def compiled(self) -> Optional[CompiledPattern]:
        return compile_pattern(self.match)

    @property
    def is_valid(self) -> bool:
        return self.compiled is not None

    def update(self, options: Any) -> "ProxyConfig":
        """
        Partial overlay -> new ProxyConfig.

        - server 가 있으면 기존 server 에 병합
        - match 가 문자열이면 교체
        - tunnel 은 server 키가 있을 때만 갱신 (bool 이 아니면 False)
        - disabled 가 bool 이면 교체
        """
        if not isinstance(options, Mapping):
            return self

        changes: Dict[str, Any] = {}
        if "server" in options:
            changes["server"] = self.server.merge(options["server"])
            tunnel = options.get("tunnel")
            changes["tunnel"] = tunnel if isinstance(tunnel, bool) else False
        if isinstance(options.get("match"), str):
            changes["match"] = options["match"]
        if isinstance(options.get("disabled"), bool):
            changes["disabled"] = options["disabled"]

        if not changes:
            return self
        return self.model_copy(update=changes)

    def test(self, url: Any) -> bool:
        """이 설정의 match 가 url 을 포함하는지 검사 (예외 없음)"""
        return UrlMatcher.test(self.match, url)


# -------------------------------------------------------------------------
# [API Communication Schemas]
# -------------------------------------------------------------------------

class ResolveRequest(BaseModel):
    """Client -> API: 이 URL 에 사용할 프록시 질의"""
    url: str

class ResolveResponse(BaseModel):
    """API -> Client: 선택된 프록시 (없으면 matched=False)"""
    matched: bool
    match: Optional[str] = None
    server: Optional[str] = None
    tunnel: bool = False

class PatternTestRequest(BaseModel):
    pattern: str
    url: str

class PatternTestResponse(BaseModel):
    matched: bool
    valid: bool

class ProxyListResponse(BaseModel):
    proxies: List[Dict[str, Any]] = Field(default_factory=list)
