from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PageMarkers:
    """
    Azure AD page contract: text markers and protocol constants.
    The IdP changes its pages over time; keep every hook here for easy maintenance.
    """

    # Page-type markers, searched in the raw response body.
    converged_sign_in: str = "ConvergedSignIn"
    converged_tfa: str = "ConvergedTFA"
    kmsi_interrupt: str = "KmsiInterrupt"
    saml_request: str = "SAMLRequest"
    server_error_key: str = "sErrorCode"

    # Form field carrying the final assertion.
    saml_response_field: str = "SAMLResponse"

    # Start of the SP-initiated flow for a linked application.
    start_path: str = "/applications/redirecttofederatedapplication.aspx?Operation=LinkedSignIn&applicationId={app_id}"

    # ADFS forms authentication
    adfs_username_field: str = "UserName"
    adfs_password_field: str = "Password"
    adfs_auth_method_field: str = "AuthMethod"
    adfs_auth_method: str = "FormsAuthentication"

    # KMSI: "1" declines "stay signed in".
    kmsi_login_options: str = "1"


# MFA method ids advertised in arrUserProofs.
MFA_PHONE_APP_OTP = "PhoneAppOTP"
MFA_PHONE_APP_NOTIFICATION = "PhoneAppNotification"
MFA_ONE_WAY_SMS = "OneWaySMS"
MFA_TWO_WAY_VOICE_MOBILE = "TwoWayVoiceMobile"

OTP_METHODS = frozenset({MFA_PHONE_APP_OTP, MFA_ONE_WAY_SMS})
PUSH_METHODS = frozenset({MFA_PHONE_APP_NOTIFICATION})

DEFAULT_POLL_INTERVAL_SECONDS = 2.0
