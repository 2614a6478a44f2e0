from typing import Any

import httpx


def parse_json_body(response: httpx.Response) -> Any:
    """Return the decoded JSON body, ``None`` for an empty body.

    Raises ValueError when the body is present but not JSON.
    """
    if not response.content or not response.content.strip():
        return None
    return response.json()


def error_fields(response: httpx.Response) -> dict[str, Any]:
    try:
        body = parse_json_body(response)
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def extract_error_message(
    body: dict[str, Any],
    keys: tuple[str, ...],
    fallback: str,
) -> str:
    for key in keys:
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return fallback
