from typing import Dict, Optional, Set
from urllib.parse import urlparse


def allowed_origins_from_setting(allowed_domains: str) -> Set[str]:
    """Parse the comma-separated ALLOWED_DOMAINS setting."""
    return {domain.strip() for domain in allowed_domains.split(",") if domain.strip()}


def get_cors_headers(
    origin_value: Optional[str], path: str, debug: bool, allowed_origins: Set[str]
) -> Dict[str, str]:
    """Return appropriate CORS headers based on origin and path."""
    allowed_debug_hosts = {
        "localhost",
        "127.0.0.1",
    }

    headers = {
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": (
            "Keep-Alive, User-Agent, X-Requested-With, "
            "If-Modified-Since, Cache-Control, Content-Type, "
            "Authorization"
        ),
        "Vary": "Origin"
    }

    if path.startswith("/auth/"):
        headers["Access-Control-Allow-Origin"] = "*"
    elif origin_value:
        parsed = urlparse(origin_value)
        base = f"{parsed.scheme}://{parsed.hostname}" if parsed.scheme and parsed.hostname else origin_value

        if base in allowed_origins:
            headers["Access-Control-Allow-Origin"] = origin_value
        elif debug and parsed.hostname in allowed_debug_hosts:
            headers["Access-Control-Allow-Origin"] = origin_value

    return headers
