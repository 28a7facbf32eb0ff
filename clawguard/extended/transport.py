"""
clawguard.extended.transport
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Blocking JSON POST used by the delivery buffer and the alert dispatcher.

A transport is any ``(url, payload, headers, timeout) -> status`` callable;
tests substitute their own. HTTP error statuses come back as return values,
connection problems and malformed responses raise.
"""

from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request

from clawguard import __version__

USER_AGENT = f"ClawGuard/{__version__}"

TRANSPORT_ERRORS = (urllib.error.URLError, http.client.HTTPException, OSError, TimeoutError, ValueError)


def post_json(url: str, payload: dict, headers: dict | None = None,
              timeout: float = 10.0) -> int:
    body = json.dumps(payload, default=str).encode("utf-8")
    req = urllib.request.Request(url, data=body, method="POST")
    req.add_header("Content-Type", "application/json")
    req.add_header("User-Agent", USER_AGENT)
    for name, value in (headers or {}).items():
        req.add_header(name, value)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            resp.read()
            return resp.status
    except urllib.error.HTTPError as e:
        return e.code


def is_success(status) -> bool:
    return isinstance(status, int) and 200 <= status < 300
