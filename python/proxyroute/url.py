import re
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from proxyroute.errors import UrlParseError

PROTOCOL_PREFIX = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*)://")
WHITESPACE = re.compile(r"\s")
REDACTED_PASSWORD = "***"


def split_url(raw: str) -> Dict[str, Any]:
    """
    URL 문자열을 protocol / auth / host / port / path 로 분리합니다.
    호스트의 대소문자는 그대로 유지합니다 (호스트 비교는 case-sensitive).
    """
    if not isinstance(raw, str) or not raw.strip():
        raise UrlParseError(f"Not a URL: {raw!r}")

    raw = raw.strip()
    prefix = PROTOCOL_PREFIX.match(raw)
    protocol = prefix.group(1).lower() if prefix else None
    rest = raw[prefix.end():] if prefix else raw

    try:
        parts = urlsplit("//" + rest)
        port = parts.port
    except ValueError as e:
        raise UrlParseError(f"Invalid URL {raw!r}: {e}") from e

    hostinfo = parts.netloc.rpartition("@")[2]
    if hostinfo.startswith("["):
        host = hostinfo[:hostinfo.find("]") + 1]
    else:
        host = hostinfo.partition(":")[0]
    # ":0080" 같은 포트 표기를 remote 에 그대로 남기기 위해 원문도 보관
    raw_port = hostinfo[len(host) + 1:] if port is not None else None

    if not host or WHITESPACE.search(parts.netloc):
        raise UrlParseError(f"Invalid host in URL {raw!r}")

    return {
        "protocol": protocol,
        "username": parts.username,
        "password": parts.password,
        "host": host,
        "port": port,
        "raw_port": raw_port,
        "path": parts.path or "/",
    }


class Url(BaseModel):
    """
    Minimal URL value object used for match evaluation and proxy servers.

    Accepts a raw string anywhere a Url is expected:
        Url.model_validate("http://proxy.local:3128")
    """
    model_config = ConfigDict(frozen=True)

    protocol: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    path: str = "/"
    raw_port: Optional[str] = Field(default=None, exclude=True, repr=False)

    @model_validator(mode="before")
    @classmethod
    def _coerce_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return split_url(data)
        return data

    @classmethod
    def parse(cls, raw: str) -> "Url":
        """Parse a URL string, raising UrlParseError on malformed input."""
        return cls(**split_url(raw))

    @property
    def remote(self) -> str:
        """host[:port], the unit of host comparison."""
        if self.host is None:
            return ""
        if self.port is None:
            return self.host
        port = str(self.port)
        if self.raw_port and self.raw_port.isdigit() and int(self.raw_port) == self.port:
            port = self.raw_port
        return f"{self.host}:{port}"

    @property
    def is_empty(self) -> bool:
        return self.host is None

    def merge(self, value: Any) -> "Url":
        """
        Derive a new Url from this one.

        A string or Url replaces the whole value, a mapping overlays only
        the fields it names, None resets to an empty Url.
        """
        if value is None or value == "":
            return Url()
        if isinstance(value, Url):
            return value
        if isinstance(value, str):
            return Url.parse(value)
        if isinstance(value, Mapping):
            try:
                return Url.model_validate({**self.model_dump(), "raw_port": self.raw_port, **value})
            except ValidationError as e:
                raise UrlParseError(f"Invalid server fields {dict(value)!r}: {e}") from e
        raise UrlParseError(f"Cannot merge {type(value).__name__} into Url")

    def redacted(self) -> str:
        """외부로 노출할 문자열 표현. 비밀번호는 마스킹합니다."""
        return self._render(REDACTED_PASSWORD)

    def __str__(self) -> str:
        return self._render(self.password)

    def _render(self, password: Optional[str]) -> str:
        if self.host is None:
            return ""
        auth = ""
        if self.username:
            auth = self.username
            if self.password:
                auth += f":{password}"
            auth += "@"
        prefix = f"{self.protocol}://" if self.protocol else ""
        path = self.path if self.path != "/" else ""
        return f"{prefix}{auth}{self.remote}{path}"
