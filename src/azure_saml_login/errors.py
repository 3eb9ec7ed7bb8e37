from __future__ import annotations

from typing import Optional


class AuthFlowError(RuntimeError):
    """
    Base class for every failure that leaves `AzureAdClient.authenticate()`.

    `kind` identifies the failure family for callers deciding whether to retry the whole login.
    `step` names the page/handler that was running; the dispatcher fills it in on the way out.
    """

    kind = "auth_flow"

    def __init__(self, message: str, *, step: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.step = step

    def with_step(self, step: str) -> "AuthFlowError":
        # Keep the innermost step when errors are re-raised through nested handlers.
        if not self.step:
            self.step = step
        return self

    def __str__(self) -> str:
        if self.step:
            return f"{self.step} failed: {self.message}"
        return self.message


class TransportError(AuthFlowError):
    """
    Connectivity/TLS/timeout failure from the HTTP layer. The original `requests` exception is kept as `__cause__`.
    """

    kind = "transport"


class ProtocolContractError(AuthFlowError):
    """
    An expected element ($Config, form, action URL) was missing: the IdP page contract changed.
    """

    kind = "protocol_contract"


class ServerAuthError(AuthFlowError):
    kind = "server_auth"

    def __init__(self, code: str, text: str = "", *, step: str = "") -> None:
        self.code = code
        self.text = text
        super().__init__(f"authentication error: {code} - {text}", step=step)


class MfaError(AuthFlowError):
    kind = "mfa"

    def __init__(self, message: str, *, code: Optional[int] = None, step: str = "") -> None:
        self.code = code
        super().__init__(message, step=step)


class MfaTimeoutError(MfaError):
    kind = "mfa_timeout"


class UnrecognizedPageError(AuthFlowError):
    """
    The IdP returned a page matching none of the known markers and no server error code.
    """

    kind = "unrecognized_page"


class ConfigError(ValueError):
    """Invalid configuration or CLI input (raised outside the login flow)."""
