class ProxyRouteError(Exception):
    """Base exception for proxyroute errors."""
    pass


class UrlParseError(ProxyRouteError, ValueError):
    """Raised when a URL string cannot be split into protocol, remote and path."""
    pass


class ConfigLoadError(ProxyRouteError):
    """Raised when a proxy list file cannot be read or decoded."""
    pass
