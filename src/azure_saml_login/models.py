from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


BENIGN_ERROR_CODE = "50058"  # "user not signed in yet"; present on a fresh sign-in page


@dataclass(frozen=True)
class LoginCredentials:
    username: str
    password: str = field(repr=False)
    # Optional pre-supplied one-time code for OTP-based MFA methods.
    mfa_token: str = field(default="", repr=False)


class _ServerModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: object) -> object:
        # The IdP sends explicit nulls for unused keys; fall back to field defaults instead.
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class UserProof(_ServerModel):
    auth_method_id: str = Field(default="", alias="authMethodId")
    data: str = ""
    display: str = ""
    is_default: bool = Field(default=False, alias="isDefault")


class SessionContext(_ServerModel):
    """
    The `$Config` object embedded in every converged sign-in page.

    Values are single-use: each page carries a fresh context that supersedes the previous one.
    """

    url_get_credential_type: str = Field(default="", alias="urlGetCredentialType")
    user_proofs: List[UserProof] = Field(default_factory=list, alias="arrUserProofs")
    url_skip_mfa_registration: str = Field(default="", alias="urlSkipMfaRegistration")
    polling_intervals: Dict[str, float] = Field(default_factory=dict, alias="oPerAuthPollingInterval")
    url_begin_auth: str = Field(default="", alias="urlBeginAuth")
    url_end_auth: str = Field(default="", alias="urlEndAuth")
    url_post: str = Field(default="", alias="urlPost")
    error_code: str = Field(default="", alias="sErrorCode")
    error_text: str = Field(default="", alias="sErrTxt")
    post_username: str = Field(default="", alias="sPOST_Username")
    flow_token: str = Field(default="", alias="sFT")
    flow_token_name: str = Field(default="flowToken", alias="sFTName")
    ctx: str = Field(default="", alias="sCtx")
    hpgact: int = 0
    hpgid: int = 0
    pgid: str = ""
    api_canary: str = Field(default="", alias="apiCanary")
    canary: str = ""
    correlation_id: str = Field(default="", alias="correlationId")
    session_id: str = Field(default="", alias="sessionId")

    def has_blocking_error(self) -> bool:
        return bool(self.error_code) and self.error_code != BENIGN_ERROR_CODE


class CredentialTypeRequest(_ServerModel):
    username: str
    is_other_idp_supported: bool = Field(default=True, alias="isOtherIdpSupported")
    check_phones: bool = Field(default=False, alias="checkPhones")
    is_remote_ngc_supported: bool = Field(default=False, alias="isRemoteNGCSupported")
    is_cookie_banner_shown: bool = Field(default=False, alias="isCookieBannerShown")
    is_fido_supported: bool = Field(default=False, alias="isFidoSupported")
    original_request: str = Field(default="", alias="originalRequest")
    country: str = ""
    forceotclogin: bool = False
    is_external_federation_disallowed: bool = Field(default=False, alias="isExternalFederationDisallowed")
    is_remote_connect_supported: bool = Field(default=False, alias="isRemoteConnectSupported")
    federation_flags: int = Field(default=0, alias="federationFlags")
    is_signup: bool = Field(default=False, alias="isSignup")
    flow_token: str = Field(default="", alias="flowToken")
    is_access_pass_supported: bool = Field(default=False, alias="isAccessPassSupported")


class CredentialDetails(_ServerModel):
    pref_credential: int = Field(default=0, alias="PrefCredential")
    has_password: bool = Field(default=False, alias="HasPassword")
    federation_redirect_url: str = Field(default="", alias="FederationRedirectUrl")


class CredentialTypeResponse(_ServerModel):
    username: str = Field(default="", alias="Username")
    display: str = Field(default="", alias="Display")
    if_exists_result: int = Field(default=0, alias="IfExistsResult")
    throttle_status: int = Field(default=0, alias="ThrottleStatus")
    credentials: CredentialDetails = Field(default_factory=CredentialDetails, alias="Credentials")
    flow_token: str = Field(default="", alias="FlowToken")
    api_canary: str = Field(default="", alias="apiCanary")


class MfaRequest(_ServerModel):
    auth_method_id: str = Field(alias="AuthMethodId")
    method: str = Field(alias="Method")
    ctx: str = Field(default="", alias="Ctx")
    flow_token: str = Field(default="", alias="FlowToken")
    session_id: Optional[str] = Field(default=None, alias="SessionId")
    additional_auth_data: Optional[str] = Field(default=None, alias="AdditionalAuthData")

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump(by_alias=True, exclude_none=True)
        # Empty optional values are omitted on the wire, same as unset ones.
        for key in ("SessionId", "AdditionalAuthData"):
            if payload.get(key) == "":
                payload.pop(key)
        return payload


class MfaState(_ServerModel):
    """Reply of a BeginAuth/EndAuth call; replaced on every poll."""

    success: bool = Field(default=False, alias="Success")
    result_value: str = Field(default="", alias="ResultValue")
    message: Any = Field(default=None, alias="Message")
    auth_method_id: str = Field(default="", alias="AuthMethodId")
    err_code: int = Field(default=0, alias="ErrCode")
    retry: bool = Field(default=False, alias="Retry")
    flow_token: str = Field(default="", alias="FlowToken")
    ctx: str = Field(default="", alias="Ctx")
    session_id: str = Field(default="", alias="SessionId")
    correlation_id: str = Field(default="", alias="CorrelationId")
    entropy: int = Field(default=0, alias="Entropy")

    @property
    def is_terminal(self) -> bool:
        return self.success or not self.retry
