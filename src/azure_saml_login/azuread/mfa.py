from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from pydantic import ValidationError

from ..errors import MfaError, MfaTimeoutError, ProtocolContractError
from ..models import LoginCredentials, MfaRequest, MfaState, SessionContext, UserProof
from ..prompter import Prompter
from .markers import DEFAULT_POLL_INTERVAL_SECONDS, OTP_METHODS, PUSH_METHODS
from .transport import ResponseSnapshot, TransportSession


logger = logging.getLogger(__name__)


def select_user_proof(proofs: Sequence[UserProof]) -> UserProof:
    """The proof flagged as default, else the first one in server order."""
    if not proofs:
        raise ProtocolContractError("no MFA methods available (arrUserProofs is empty)")
    for proof in proofs:
        if proof.is_default:
            return proof
    return proofs[0]


def _message_text(message: object) -> str:
    if message is None:
        return ""
    return str(message)


class MfaDriver:
    """
    BeginAuth/EndAuth challenge-response loop for the ConvergedTFA page.

    Runs its own request loop, independent of the page dispatcher. Push approval can take
    arbitrarily long; `timeout_seconds=None` keeps polling until the server resolves the attempt.
    """

    def __init__(
        self,
        transport: TransportSession,
        *,
        prompter: Optional[Prompter] = None,
        default_poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.prompter = prompter or Prompter()
        self.default_poll_interval = default_poll_interval
        self.timeout_seconds = timeout_seconds or None
        self._sleep = sleep
        self._clock = clock

    def run(self, ctx: SessionContext, creds: LoginCredentials) -> MfaState:
        proof = select_user_proof(ctx.user_proofs)
        logger.info("Using MFA method %s (%s)", proof.auth_method_id, proof.display or "no display text")
        state = self.begin(proof, ctx)
        return self.poll(state, ctx, creds)

    def begin(self, proof: UserProof, ctx: SessionContext) -> MfaState:
        if not ctx.url_begin_auth:
            raise ProtocolContractError("urlBeginAuth missing from ConvergedTFA $Config")
        req = MfaRequest(
            auth_method_id=proof.auth_method_id,
            method="BeginAuth",
            ctx=ctx.ctx,
            flow_token=ctx.flow_token,
        )
        state = self._call(ctx.url_begin_auth, req)
        if not state.success:
            raise MfaError(
                f"MFA BeginAuth failed: {_message_text(state.message)}",
                code=state.err_code or None,
            )
        return state

    def poll(self, state: MfaState, ctx: SessionContext, creds: LoginCredentials) -> MfaState:
        if not ctx.url_end_auth:
            raise ProtocolContractError("urlEndAuth missing from ConvergedTFA $Config")

        started = self._clock()
        attempt = 0
        while True:
            req = MfaRequest(
                auth_method_id=state.auth_method_id,
                method="EndAuth",
                ctx=state.ctx,
                flow_token=state.flow_token,
                session_id=state.session_id,
            )

            if req.auth_method_id in OTP_METHODS:
                if creds.mfa_token:
                    req.additional_auth_data = creds.mfa_token
                else:
                    try:
                        code = self.prompter.string("Enter verification code")
                    except EOFError as e:
                        raise MfaError("failed to read verification code") from e
                    req.additional_auth_data = code.strip()

            if req.auth_method_id in PUSH_METHODS and attempt == 0:
                if state.entropy:
                    notice = f"Phone approval required. Number match: {state.entropy}"
                else:
                    notice = "Phone approval required."
                logger.info(notice)
                self.prompter.notify(notice)

            state = self._call(ctx.url_end_auth, req)
            attempt += 1
            logger.debug(
                "EndAuth attempt %d: success=%s retry=%s err_code=%s",
                attempt,
                state.success,
                state.retry,
                state.err_code,
            )

            if state.err_code != 0:
                raise MfaError(f"MFA error {state.err_code}: {_message_text(state.message)}", code=state.err_code)
            if state.success:
                logger.info("MFA approved after %d attempt(s)", attempt)
                return state
            if not state.retry:
                raise MfaError("MFA authentication failed")

            # The reply may omit the method id; keep polling the one we asked about.
            if not state.auth_method_id:
                state = state.model_copy(update={"auth_method_id": req.auth_method_id})

            interval = ctx.polling_intervals.get(state.auth_method_id, self.default_poll_interval)
            if self.timeout_seconds is not None:
                elapsed = self._clock() - started
                if elapsed + interval > self.timeout_seconds:
                    raise MfaTimeoutError(
                        f"MFA not completed within {self.timeout_seconds:g}s ({attempt} attempt(s))"
                    )
            self._sleep(interval)

    def _call(self, url: str, req: MfaRequest) -> MfaState:
        snapshot: ResponseSnapshot = self.transport.post_json(url, req.to_payload())
        try:
            return MfaState.model_validate(snapshot.json())
        except (ValueError, ValidationError) as e:
            raise ProtocolContractError(
                f"MFA {req.method} returned an unexpected body (status={snapshot.status_code})"
            ) from e
