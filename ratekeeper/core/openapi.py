"""OpenAPI customization.

Adds the ``X-API-Key`` security scheme and applies it only to the admin
endpoints (per-key stats and reset). Decision and health endpoints stay
unauthenticated in the generated docs, matching their runtime behaviour.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

TAGS_METADATA = [
    {
        "name": "Rate limits",
        "description": "Admission decisions, preset listing and per-key administration.",
    },
    {
        "name": "Health",
        "description": "Liveness check.",
    },
]


def _is_admin_path(path: str) -> bool:
    return "/keys/" in path


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags and admin security."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {})["AdminApiKey"] = {
            "type": "apiKey",
            "in": "header",
            "name": "X-API-Key",
            "description": "Admin key from APP_ADMIN_API_KEYS.",
        }

        tags = schema.setdefault("tags", [])
        existing = {t.get("name") for t in tags}
        tags.extend(tag for tag in TAGS_METADATA if tag["name"] not in existing)

        for path, methods in schema.get("paths", {}).items():
            if not _is_admin_path(path):
                continue
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj["security"] = [{"AdminApiKey": []}]

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
