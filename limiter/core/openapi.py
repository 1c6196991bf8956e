"""OpenAPI customization for the limiter service.

Documents the optional ``X-API-Key`` header used to pick the rate limit
identifier, the ``X-RateLimit-*`` response headers, and tag metadata.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_TAGS = [
    {"name": "Quota", "description": "Rate-limited endpoints reporting the caller's window."},
    {"name": "Health", "description": "Liveness and counter store checks."},
]

_RATE_LIMIT_HEADERS = {
    "X-RateLimit-Limit": "Operations allowed per window.",
    "X-RateLimit-Remaining": "Operations left in the current window.",
    "X-RateLimit-Reset": "UNIX epoch seconds at which the window resets.",
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation with identifier and header docs."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyIdentifier",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Optional; requests without it are limited per client IP.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        tags.extend(tag for tag in _TAGS if tag["name"] not in existing_tag_names)

        for path, methods in schema.get("paths", {}).items():
            if path.endswith("/health"):
                continue
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                ok = method_obj.get("responses", {}).get("200")
                if ok is not None:
                    ok.setdefault("headers", {}).update(
                        {
                            name: {"description": text, "schema": {"type": "integer"}}
                            for name, text in _RATE_LIMIT_HEADERS.items()
                        }
                    )

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
