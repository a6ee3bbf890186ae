"""Best-effort check for a newer published release."""

from __future__ import annotations

import json
import logging
import re
from urllib import request
from urllib.error import URLError

LOGGER = logging.getLogger(__name__)

_VERSION_PART = re.compile(r"\d+")


def check_for_updates(url: str, current_version: str, *, timeout: float = 5.0) -> str | None:
    """Return the latest published version when it is newer than ``current_version``.

    Every failure (network, HTTP, malformed payload) is treated as "no update".
    """
    req = request.Request(url, headers={"Accept": "application/json"}, method="GET")
    try:
        with request.urlopen(req, timeout=timeout) as resp:  # noqa: S310
            payload = json.loads(resp.read().decode("utf-8"))
    except (URLError, TimeoutError, OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        LOGGER.debug("update_check_failed", extra={"url": url, "error": str(exc)})
        return None

    latest = _latest_version(payload)
    if latest is None:
        LOGGER.debug("update_check_no_version", extra={"url": url})
        return None
    if _version_key(latest) > _version_key(current_version):
        return latest
    return None


def _latest_version(payload: object) -> str | None:
    if not isinstance(payload, dict):
        return None
    info = payload.get("info")
    if not isinstance(info, dict):
        return None
    version = info.get("version")
    if isinstance(version, str) and version.strip():
        return version.strip()
    return None


def _version_key(version: str) -> tuple[int, ...]:
    release = version.split("+", 1)[0].split("-", 1)[0]
    return tuple(int(part) for part in _VERSION_PART.findall(release)[:3])
