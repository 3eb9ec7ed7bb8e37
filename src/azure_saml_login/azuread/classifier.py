from __future__ import annotations

from enum import Enum
from typing import Optional

from .extract import is_hidden_form
from .markers import PageMarkers
from .transport import ResponseSnapshot


class PageType(str, Enum):
    CONVERGED_SIGN_IN = "ConvergedSignIn"
    CONVERGED_TFA = "ConvergedTFA"
    KMSI_INTERRUPT = "KmsiInterrupt"
    SAML_REQUEST_RELAY = "SAMLRequest"
    HIDDEN_FORM = "HiddenForm"
    UNKNOWN = "Unknown"


def classify_text(body: str, *, markers: Optional[PageMarkers] = None) -> PageType:
    """
    Map a raw page body to its page type.

    Real pages often contain several markers at once (e.g. a TFA page still mentions ConvergedSignIn
    resources), so the checks run in a fixed priority order and the first hit wins.
    """
    m = markers or PageMarkers()
    if m.converged_sign_in in body:
        return PageType.CONVERGED_SIGN_IN
    if m.converged_tfa in body:
        return PageType.CONVERGED_TFA
    if m.kmsi_interrupt in body:
        return PageType.KMSI_INTERRUPT
    if m.saml_request in body:
        return PageType.SAML_REQUEST_RELAY
    if is_hidden_form(body):
        return PageType.HIDDEN_FORM
    return PageType.UNKNOWN


def classify(snapshot: ResponseSnapshot, *, markers: Optional[PageMarkers] = None) -> PageType:
    return classify_text(snapshot.text, markers=markers)
