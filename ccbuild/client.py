"""Commerce Cloud build API client.

- Lists builds for a project/environment and deletes single builds.
- Build records arrive in several shapes; field names are looked up from an
  ordered key list per attribute (see BUILD_FIELDS) so new variants only need
  a table entry.
- Network failures surface as APIError; missing settings as ConfigurationError.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests

from .errors import APIError, ConfigurationError
from .timeutil import parse_instant
from .types import Build, PruneOutcome

DEFAULT_LIST_LIMIT = 50

BUILD_ARRAY_KEYS = ("builds", "items", "data", "results")
ERROR_MESSAGE_KEYS = ("message", "error", "detail")

_TRUE_WORDS = ("true", "yes")
_MISSING = object()
_BAD_URI_CHARS = re.compile(r"[\s<>\"{}|\\^`]")


def require_non_blank(value: Optional[str], message: str) -> str:
    if value is None or not str(value).strip():
        raise ConfigurationError(message)
    return value


def _encode(value: str) -> str:
    return quote(value, safe="")


def _normalize_base_url(base_url: str) -> str:
    return base_url.strip().rstrip("/") + "/"


def _is_2xx(status: int) -> bool:
    return status // 100 == 2


# --- field extractors: each returns a value or _MISSING to try the next key ---
def _text(value: Any) -> Any:
    if isinstance(value, str) and value.strip():
        return value
    return _MISSING


def _instant(value: Any) -> Any:
    if isinstance(value, str):
        parsed = parse_instant(value)
        if parsed is not None:
            return parsed
    return _MISSING


def _uri(value: Any) -> Any:
    if not isinstance(value, str) or not value.strip():
        return _MISSING
    # whitespace, quotes and brackets are the characters URI syntax forbids outright
    if _BAD_URI_CHARS.search(value):
        return _MISSING
    return value


def _boolean(value: Any) -> bool:
    # the first present key decides, whatever its value
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return False


def first_match(
    record: Dict[str, Any], keys: Sequence[str], extract: Callable[[Any], Any]
) -> Any:
    """Return the first extracted value among ``keys`` or None."""
    for key in keys:
        if key not in record:
            continue
        value = extract(record[key])
        if value is not _MISSING:
            return value
    return None


def first_present(
    record: Dict[str, Any], keys: Sequence[str], convert: Callable[[Any], Any], default: Any
) -> Any:
    for key in keys:
        if key in record:
            return convert(record[key])
    return default


def _links_href(record: Dict[str, Any]) -> Optional[str]:
    links = record.get("links")
    if not isinstance(links, dict):
        return None
    # dict order is the JSON key order, so the first listed link wins
    for link in links.values():
        if isinstance(link, dict) and "href" in link:
            href = _uri(link["href"])
            if href is not _MISSING:
                return href
    return None


def _self_link(record: Dict[str, Any]) -> Optional[str]:
    direct = first_match(record, ("self", "href", "url"), _uri)
    if direct is not None:
        return direct
    return _links_href(record)


# attribute -> (candidate keys, extractor)
BUILD_FIELDS: Dict[str, Tuple[Tuple[str, ...], Callable[[Any], Any]]] = {
    "id": (("id", "buildId", "code"), _text),
    "code": (("code", "name", "buildCode"), _text),
    "branch": (("branch", "branchName", "branchId"), _text),
    "created_at": (("createdAt", "creationTime", "created", "created_on"), _instant),
    "last_used_at": (("lastUsedAt", "lastUsage", "last_used_at", "lastUsed"), _instant),
    "status": (("status", "state"), _text),
    "delete_reason": (("deleteReason", "reason", "message"), _text),
}
DELETABLE_KEYS = ("deletable", "deleteAllowed", "deleteEnabled", "canBeDeleted")


def parse_build(record: Any) -> Build:
    """Normalize one JSON build record into a Build."""
    fields: Dict[str, Any] = {}
    data = record if isinstance(record, dict) else {}
    for attribute, (keys, extract) in BUILD_FIELDS.items():
        fields[attribute] = first_match(data, keys, extract)
    fields["deletable"] = first_present(data, DELETABLE_KEYS, _boolean, False)
    fields["self_link"] = _self_link(data)
    fields["raw"] = record
    return Build(**fields)


def extract_build_array(root: Any) -> List[Any]:
    if isinstance(root, list):
        return root
    if isinstance(root, dict):
        for key in BUILD_ARRAY_KEYS:
            value = root.get(key)
            if isinstance(value, list):
                return value
    raise APIError("Response JSON does not contain a builds array")


def extract_error_message(body: Optional[str]) -> Optional[str]:
    """Pull a readable message out of an error body; falls back to the raw text."""
    if body is None or not body.strip():
        return None
    try:
        root = json.loads(body)
    except ValueError:
        root = None
    if isinstance(root, dict):
        for key in ERROR_MESSAGE_KEYS:
            value = root.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return body.strip()


class BuildClient:
    """Thin wrapper over the build endpoints of the Commerce Cloud API."""

    def __init__(self, base_url: Optional[str], token: Optional[str]) -> None:
        self.base_url = _normalize_base_url(require_non_blank(base_url, "Base URL is required"))
        self.token = require_non_blank(token, "API token is required")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    def list_builds(self, project_id: Optional[str], environment_id: Optional[str], limit: int = DEFAULT_LIST_LIMIT) -> List[Build]:
        project = require_non_blank(project_id, "Project ID is required")
        environment = require_non_blank(environment_id, "Environment ID is required")
        effective_limit = limit if limit > 0 else DEFAULT_LIST_LIMIT

        url = f"{self.base_url}subscriptions/{_encode(project)}/builds"
        params = {"environmentCode": environment, "limit": effective_limit}
        logging.debug("GET %s params=%s", url, params)
        try:
            resp = requests.get(url, headers=self._headers(), params=params)
        except requests.RequestException as exc:
            raise APIError(str(exc)) from exc

        if not _is_2xx(resp.status_code):
            raise APIError(f"Failed to fetch builds (status {resp.status_code}): {resp.text}")

        try:
            root = json.loads(resp.text)
        except ValueError as exc:
            raise APIError("Invalid JSON from API") from exc

        items = extract_build_array(root)
        logging.debug("Fetched %d build records", len(items))
        return [parse_build(item) for item in items]

    def delete_build(self, project_id: Optional[str], environment_id: Optional[str], build: Build) -> PruneOutcome:
        project = require_non_blank(project_id, "Project ID is required")
        environment = require_non_blank(environment_id, "Environment ID is required")
        build_id = require_non_blank(build.id, "Build ID is required")

        url = (
            f"{self.base_url}projects/{_encode(project)}"
            f"/environments/{_encode(environment)}/builds/{_encode(build_id)}"
        )
        logging.debug("DELETE %s", url)
        try:
            resp = requests.delete(url, headers=self._headers())
        except requests.RequestException as exc:
            raise APIError(str(exc)) from exc

        deleted = _is_2xx(resp.status_code)
        if deleted:
            message = "Deleted"
        else:
            message = extract_error_message(resp.text) or "Delete failed"
            logging.debug("Delete of %s failed with status %s: %s", build_id, resp.status_code, message)
        return PruneOutcome(build_id=build_id, deleted=deleted, status_code=resp.status_code, message=message)


__all__ = ["BuildClient", "APIError", "ConfigurationError", "parse_build", "extract_build_array"]
