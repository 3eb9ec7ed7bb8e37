from __future__ import annotations

import json
import logging
import platform
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional
from urllib.parse import urljoin

import requests
from requests.cookies import RequestsCookieJar

from .. import __version__


logger = logging.getLogger(__name__)

USER_AGENT = f"azure-saml-login/{__version__} ({platform.system().lower()} {platform.machine().lower()})"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class ResponseSnapshot:
    """
    Buffered capture of one HTTP exchange: final URL (after redirects) + raw body.

    Safe to read any number of times; used both for page classification and for resolving relative URLs.
    """

    url: str
    status_code: int
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)
    encoding: str = "utf-8"

    @property
    def text(self) -> str:
        return self.body.decode(self.encoding or "utf-8", errors="replace")

    @property
    def location(self) -> str:
        for k, v in self.headers.items():
            if k.lower() == "location":
                return v
        return ""

    def json(self) -> Any:
        return json.loads(self.text)

    def resolve(self, url: str) -> str:
        if url.startswith("http://") or url.startswith("https://"):
            return url
        return urljoin(self.url, url)

    @classmethod
    def from_response(cls, resp: requests.Response) -> "ResponseSnapshot":
        # requests falls back to ISO-8859-1 for text/* without a charset; the IdP serves UTF-8.
        content_type = resp.headers.get("Content-Type", "").lower()
        encoding = resp.encoding if "charset=" in content_type else None
        return cls(
            url=resp.url,
            status_code=resp.status_code,
            body=resp.content or b"",
            headers=dict(resp.headers),
            encoding=encoding or "utf-8",
        )


class TransportSession:
    """
    One cookie jar + one client identity for a whole login conversation.

    No retries happen here: `requests` exceptions surface to the caller unmodified.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 60.0,
        verify_tls: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.verify_tls = verify_tls
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = USER_AGENT
        self._follow_redirects = True

    @property
    def cookies(self) -> RequestsCookieJar:
        return self._session.cookies

    @property
    def follow_redirects(self) -> bool:
        return self._follow_redirects

    def send(
        self,
        method: str,
        url: str,
        *,
        data: Any = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> ResponseSnapshot:
        req_headers = dict(headers or {})
        req_headers["User-Agent"] = USER_AGENT
        resp = self._session.request(
            method,
            url,
            data=data,
            json=json_body,
            headers=req_headers,
            allow_redirects=self._follow_redirects,
            timeout=self.timeout_seconds,
            verify=self.verify_tls,
        )
        logger.debug(
            "%s %s -> %s (final_url=%s redirects=%d)",
            method,
            url,
            resp.status_code,
            resp.url,
            len(resp.history),
        )
        return ResponseSnapshot.from_response(resp)

    def get(self, url: str, *, headers: Optional[Dict[str, str]] = None) -> ResponseSnapshot:
        return self.send("GET", url, headers=headers)

    def post(
        self,
        url: str,
        body: Any,
        content_type: str,
        *,
        headers: Optional[Dict[str, str]] = None,
    ) -> ResponseSnapshot:
        req_headers = dict(headers or {})
        req_headers["Content-Type"] = content_type
        return self.send("POST", url, data=body, headers=req_headers)

    def post_form(
        self, url: str, fields: Mapping[str, str], *, headers: Optional[Dict[str, str]] = None
    ) -> ResponseSnapshot:
        # A list of pairs keeps the field order of the source form on the wire.
        return self.post(url, list(fields.items()), FORM_CONTENT_TYPE, headers=headers)

    def post_json(self, url: str, payload: Any, *, headers: Optional[Dict[str, str]] = None) -> ResponseSnapshot:
        req_headers = dict(headers or {})
        req_headers["Content-Type"] = JSON_CONTENT_TYPE
        return self.send("POST", url, json_body=payload, headers=req_headers)

    def disable_redirects(self) -> None:
        self._follow_redirects = False

    def enable_redirects(self) -> None:
        self._follow_redirects = True

    @contextmanager
    def redirects_disabled(self) -> Iterator["TransportSession"]:
        previous = self._follow_redirects
        self._follow_redirects = False
        try:
            yield self
        finally:
            self._follow_redirects = previous

    def reset_cookies(self) -> None:
        self._session.cookies = RequestsCookieJar()

    def close(self) -> None:
        self._session.close()
