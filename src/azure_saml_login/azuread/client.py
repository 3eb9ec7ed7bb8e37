from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, Dict, Optional

import requests
from pydantic import ValidationError

from ..errors import (
    AuthFlowError,
    ConfigError,
    ProtocolContractError,
    ServerAuthError,
    TransportError,
    UnrecognizedPageError,
)
from ..models import CredentialTypeRequest, CredentialTypeResponse, LoginCredentials, SessionContext
from ..prompter import Prompter
from .classifier import PageType, classify
from .extract import find_embedded_config, parse_embedded_config, parse_form, saml_response
from .markers import DEFAULT_POLL_INTERVAL_SECONDS, PageMarkers
from .mfa import MfaDriver
from .transport import ResponseSnapshot, TransportSession


logger = logging.getLogger(__name__)

Handler = Callable[[ResponseSnapshot, LoginCredentials], ResponseSnapshot]


class AzureAdClient:
    """
    Drives the Azure AD converged sign-in conversation until the IdP posts a SAMLResponse.

    Each response is classified into a page type, the matching handler builds and sends the next
    request, and its response becomes the next page. One client = one cookie jar = one login at a time.
    """

    def __init__(
        self,
        *,
        base_url: str,
        app_id: str,
        transport: Optional[TransportSession] = None,
        prompter: Optional[Prompter] = None,
        markers: Optional[PageMarkers] = None,
        mfa_poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        mfa_timeout_seconds: Optional[float] = None,
        capture_dir: str = "",
        max_steps: Optional[int] = None,
        mfa_driver: Optional[MfaDriver] = None,
    ) -> None:
        if not base_url:
            raise ConfigError("IdP URL is required")
        if not app_id:
            raise ConfigError("application id is required")

        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.transport = transport or TransportSession()
        self.markers = markers or PageMarkers()
        self.capture_dir = capture_dir
        self.max_steps = max_steps
        self.mfa = mfa_driver or MfaDriver(
            self.transport,
            prompter=prompter,
            default_poll_interval=mfa_poll_interval,
            timeout_seconds=mfa_timeout_seconds,
        )

        self._step_counter = 0
        self._handlers: Dict[PageType, Handler] = {
            PageType.CONVERGED_SIGN_IN: self._handle_converged_sign_in,
            PageType.CONVERGED_TFA: self._handle_converged_tfa,
            PageType.KMSI_INTERRUPT: self._handle_kmsi_interrupt,
            PageType.SAML_REQUEST_RELAY: self._handle_form_relay,
            PageType.HIDDEN_FORM: self._handle_form_relay,
        }

    @property
    def start_url(self) -> str:
        return self.base_url + self.markers.start_path.format(app_id=self.app_id)

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> "AzureAdClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def authenticate(self, creds: LoginCredentials) -> str:
        """
        Run the login flow and return the base64-encoded SAML assertion.

        Raises an `AuthFlowError` subclass on any failure; never returns a partial result.
        """
        if creds is None:
            raise ConfigError("credentials cannot be None")
        if not creds.username:
            raise ConfigError("username is required")
        if not creds.password:
            raise ConfigError("password is required")

        self._step_counter = 0
        snapshot = self._run_step("start", lambda: self.transport.get(self.start_url))

        while True:
            page = classify(snapshot, markers=self.markers)
            self._step(snapshot, page)

            if self.max_steps is not None and self._step_counter > self.max_steps:
                raise AuthFlowError(f"login did not finish within {self.max_steps} pages", step=page.value)

            if page is PageType.HIDDEN_FORM:
                assertion = saml_response(snapshot.text)
                if assertion:
                    logger.info("SAML assertion received (length=%d)", len(assertion))
                    return assertion

            if page is PageType.UNKNOWN:
                self._raise_unrecognized(snapshot)

            handler = self._handlers[page]
            current = snapshot
            snapshot = self._run_step(page.value, lambda: handler(current, creds))

    # Dispatch helpers

    def _run_step(self, step: str, fn: Callable[[], ResponseSnapshot]) -> ResponseSnapshot:
        try:
            return fn()
        except AuthFlowError as e:
            raise e.with_step(step)
        except requests.RequestException as e:
            raise TransportError(str(e), step=step) from e

    def _step(self, snapshot: ResponseSnapshot, page: PageType) -> None:
        self._step_counter += 1
        logger.info("Step %02d %s (url=%s status=%s)", self._step_counter, page.value, snapshot.url, snapshot.status_code)

        if not self.capture_dir:
            return
        safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", page.value).strip("_") or "page"
        try:
            out_dir = Path(self.capture_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            (out_dir / f"step_{self._step_counter:02d}_{safe}.html").write_text(snapshot.text, encoding="utf-8")
        except OSError:
            logger.debug("Failed to save page capture (step=%s).", page.value, exc_info=True)

    def _raise_unrecognized(self, snapshot: ResponseSnapshot) -> None:
        if self.markers.server_error_key in snapshot.text:
            raw = find_embedded_config(snapshot.text)
            if raw is not None:
                try:
                    ctx: Optional[SessionContext] = SessionContext.model_validate(raw)
                except ValidationError:
                    logger.debug("Unknown page has a $Config of unexpected shape.", exc_info=True)
                    ctx = None
                if ctx is not None and ctx.has_blocking_error():
                    raise ServerAuthError(ctx.error_code, ctx.error_text, step=PageType.UNKNOWN.value)
        raise UnrecognizedPageError(
            f"reached unknown authentication state (url={snapshot.url} status={snapshot.status_code})",
            step=PageType.UNKNOWN.value,
        )

    def _context(self, snapshot: ResponseSnapshot) -> SessionContext:
        try:
            return SessionContext.model_validate(parse_embedded_config(snapshot.text))
        except ValidationError as e:
            raise ProtocolContractError(f"$Config has an unexpected shape: {e.error_count()} invalid field(s)") from e

    # State handlers

    def _handle_converged_sign_in(self, snapshot: ResponseSnapshot, creds: LoginCredentials) -> ResponseSnapshot:
        ctx = self._context(snapshot)
        referer = snapshot.url

        cred_type = self._get_credential_type(snapshot, ctx, creds)
        federation_url = cred_type.credentials.federation_redirect_url
        if federation_url:
            logger.info("Account is federated; continuing at the federation server")
            return self._federated_auth(federation_url, creds)

        # 50058 ("not signed in yet") is expected on a fresh sign-in page.
        if ctx.has_blocking_error():
            raise ServerAuthError(ctx.error_code, ctx.error_text)
        if not ctx.url_post:
            raise ProtocolContractError("urlPost missing from ConvergedSignIn $Config")

        fields = {
            "canary": ctx.canary,
            "hpgrequestid": ctx.session_id,
            ctx.flow_token_name: ctx.flow_token,
            "ctx": ctx.ctx,
            "login": creds.username,
            "loginfmt": creds.username,
            "passwd": creds.password,
        }
        return self.transport.post_form(snapshot.resolve(ctx.url_post), fields, headers={"Referer": referer})

    def _get_credential_type(
        self, snapshot: ResponseSnapshot, ctx: SessionContext, creds: LoginCredentials
    ) -> CredentialTypeResponse:
        if not ctx.url_get_credential_type:
            raise ProtocolContractError("urlGetCredentialType missing from ConvergedSignIn $Config")

        body = CredentialTypeRequest(
            username=creds.username,
            original_request=ctx.ctx,
            flow_token=ctx.flow_token,
        )
        headers = {
            "canary": ctx.api_canary,
            "client-request-id": ctx.correlation_id,
            "hpgact": str(ctx.hpgact),
            "hpgid": str(ctx.hpgid),
            "hpgrequestid": ctx.session_id,
            "Referer": snapshot.url,
        }
        res = self.transport.post_json(
            snapshot.resolve(ctx.url_get_credential_type),
            body.model_dump(by_alias=True),
            headers=headers,
        )
        try:
            return CredentialTypeResponse.model_validate(res.json())
        except ValueError as e:
            raise ProtocolContractError(f"GetCredentialType returned an unexpected body (status={res.status_code})") from e

    def _federated_auth(self, federation_url: str, creds: LoginCredentials) -> ResponseSnapshot:
        res = self.transport.get(federation_url)
        try:
            form = parse_form(res.text)
        except ProtocolContractError as e:
            raise ProtocolContractError(f"federation login page: {e.message}") from e
        if not form.action:
            raise ProtocolContractError("federation login form has no action URL")

        fields = dict(form.fields)
        fields[self.markers.adfs_username_field] = creds.username
        fields[self.markers.adfs_password_field] = creds.password
        fields[self.markers.adfs_auth_method_field] = self.markers.adfs_auth_method
        return self.transport.post_form(res.resolve(form.action), fields)

    def _handle_converged_tfa(self, snapshot: ResponseSnapshot, creds: LoginCredentials) -> ResponseSnapshot:
        ctx = self._context(snapshot)

        if ctx.url_skip_mfa_registration:
            logger.info("Skipping MFA registration prompt")
            return self.transport.get(snapshot.resolve(ctx.url_skip_mfa_registration))

        if not ctx.user_proofs:
            raise ProtocolContractError("ConvergedTFA page lists no MFA methods and no skip URL")
        if not ctx.url_post:
            raise ProtocolContractError("urlPost missing from ConvergedTFA $Config")

        state = self.mfa.run(ctx, creds)

        fields = {
            "request": state.ctx,
            "mfaAuthMethod": state.auth_method_id,
            "canary": ctx.canary,
            "login": ctx.post_username or creds.username,
            ctx.flow_token_name: state.flow_token,
        }
        return self.transport.post_form(snapshot.resolve(ctx.url_post), fields)

    def _handle_kmsi_interrupt(self, snapshot: ResponseSnapshot, creds: LoginCredentials) -> ResponseSnapshot:
        ctx = self._context(snapshot)
        if not ctx.url_post:
            raise ProtocolContractError("urlPost missing from KmsiInterrupt $Config")

        fields = {
            ctx.flow_token_name: ctx.flow_token,
            "ctx": ctx.ctx,
            "LoginOptions": self.markers.kmsi_login_options,
        }
        with self.transport.redirects_disabled():
            res = self.transport.post_form(snapshot.resolve(ctx.url_post), fields)

        if 300 <= res.status_code < 400 and res.location:
            logger.debug("KMSI answered with a redirect to %s", res.location)
            return self.transport.get(res.resolve(res.location))
        return res

    def _handle_form_relay(self, snapshot: ResponseSnapshot, creds: LoginCredentials) -> ResponseSnapshot:
        form = parse_form(snapshot.text)
        if not form.action:
            raise ProtocolContractError("relay form has no action URL")
        return self.transport.post_form(snapshot.resolve(form.action), form.fields)
