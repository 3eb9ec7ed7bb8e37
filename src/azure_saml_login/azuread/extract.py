from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

from ..errors import ProtocolContractError


_CONFIG_RE = re.compile(r"\$Config\s*=\s*\{")
_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class HtmlForm:
    action: str
    fields: Dict[str, str] = field(default_factory=dict)
    method: str = "post"


def find_embedded_config(html: str) -> Optional[Dict[str, Any]]:
    """
    Return the `$Config={...};` object embedded in a page's inline script, or None.

    The object is decoded with a streaming JSON decoder rather than a `[^;]+` match, since
    string values (URLs, error text) regularly contain semicolons.
    """
    m = _CONFIG_RE.search(html or "")
    if not m:
        return None
    start = m.end() - 1
    try:
        obj, _ = _decoder.raw_decode(html, start)
    except ValueError:
        return None
    return obj if isinstance(obj, dict) else None


def parse_embedded_config(html: str) -> Dict[str, Any]:
    cfg = find_embedded_config(html)
    if cfg is None:
        raise ProtocolContractError("$Config not found in response (or not valid JSON)")
    return cfg


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def parse_form(html: str) -> HtmlForm:
    """
    First <form> on the page: its action plus every named <input> (hidden or not), in document order.

    Inputs without a value attribute are kept with an empty string; relays must re-post them as-is.
    """
    form = _soup(html).find("form")
    if form is None:
        raise ProtocolContractError("form not found")

    fields: Dict[str, str] = {}
    for inp in form.find_all("input"):
        name = inp.get("name")
        if not name:
            continue
        fields[name] = inp.get("value") or ""

    return HtmlForm(
        action=(form.get("action") or "").strip(),
        fields=fields,
        method=(form.get("method") or "post").strip().lower(),
    )


def is_hidden_form(html: str) -> bool:
    soup = _soup(html)
    if soup.find("form") is None:
        return False
    if soup.find("input", attrs={"type": re.compile(r"^hidden$", re.I)}) is not None:
        return True
    return soup.find("input", attrs={"name": "SAMLResponse"}) is not None


def field_value(html: str, name: str) -> Optional[str]:
    inp = _soup(html).find("input", attrs={"name": name})
    if inp is None:
        return None
    return inp.get("value") or ""


def saml_response(html: str) -> Optional[str]:
    value = field_value(html, "SAMLResponse")
    return value or None
