from __future__ import annotations

from pathlib import Path

import pytest
import requests

from azure_saml_login.azuread.client import AzureAdClient
from azure_saml_login.azuread.mfa import MfaDriver
from azure_saml_login.errors import (
    AuthFlowError,
    ConfigError,
    ProtocolContractError,
    ServerAuthError,
    TransportError,
    UnrecognizedPageError,
)
from azure_saml_login.models import LoginCredentials

from fakes import APP_ID, IDP_URL, LOGIN_HOST, START_URL, FakeTransport, ScriptedPrompter, config_page, form_page


SIGNIN_URL = f"{LOGIN_HOST}/tenant-id/saml2"
CRED_TYPE_URL = f"{LOGIN_HOST}/common/GetCredentialType?mkt=en-US"
LOGIN_POST_URL = f"{LOGIN_HOST}/tenant-id/login"
BEGIN_URL = f"{LOGIN_HOST}/common/SAS/BeginAuth"
END_URL = f"{LOGIN_HOST}/common/SAS/EndAuth"
PROCESS_AUTH_URL = f"{LOGIN_HOST}/common/SAS/ProcessAuth"
KMSI_URL = f"{LOGIN_HOST}/kmsi"
AFTER_KMSI_URL = f"{LOGIN_HOST}/tenant-id/saml2/continue"
AWS_ACS = "https://signin.aws.amazon.com/saml"
ASSERTION = "PHNhbWxwOlJlc3BvbnNlIC8+"

CREDS = LoginCredentials(username="user@example.com", password="hunter2")


def _sign_in_cfg(**extra) -> dict:
    cfg = {
        "urlGetCredentialType": CRED_TYPE_URL,
        "urlPost": "/tenant-id/login",
        "sFT": "ft-signin",
        "sFTName": "flowToken",
        "sCtx": "ctx-signin",
        "canary": "canary-1",
        "apiCanary": "api-canary-1",
        "correlationId": "corr-1",
        "sessionId": "sess-0",
        "hpgact": 1800,
        "hpgid": 1104,
        "sErrorCode": "50058",
    }
    cfg.update(extra)
    return cfg


def _tfa_cfg(**extra) -> dict:
    cfg = {
        "urlPost": "/common/SAS/ProcessAuth",
        "urlBeginAuth": BEGIN_URL,
        "urlEndAuth": END_URL,
        "arrUserProofs": [
            {"authMethodId": "PhoneAppOTP", "isDefault": False},
            {"authMethodId": "PhoneAppNotification", "isDefault": True},
        ],
        "oPerAuthPollingInterval": {"PhoneAppNotification": 1.5},
        "sFT": "ft-tfa",
        "sCtx": "ctx-tfa",
        "canary": "canary-2",
        "sPOST_Username": "",
    }
    cfg.update(extra)
    return cfg


def _saml_page() -> str:
    return form_page(AWS_ACS, {"SAMLResponse": ASSERTION, "RelayState": ""})


def _client(t: FakeTransport, prompter: ScriptedPrompter | None = None, **kw) -> AzureAdClient:
    prompter = prompter or ScriptedPrompter()
    sleeps: list = []
    driver = MfaDriver(t, prompter=prompter, sleep=sleeps.append, clock=lambda: 0.0)
    return AzureAdClient(base_url=IDP_URL, app_id=APP_ID, transport=t, prompter=prompter, mfa_driver=driver, **kw)


def _route_sign_in(t: FakeTransport, cfg: dict | None = None, cred_type: dict | None = None) -> None:
    t.add("GET", START_URL, config_page("ConvergedSignIn", cfg or _sign_in_cfg()), final_url=SIGNIN_URL)
    t.add("POST", CRED_TYPE_URL, cred_type or {"Username": CREDS.username, "Credentials": {"PrefCredential": 1}})


def test_start_url_and_constructor_validation() -> None:
    client = AzureAdClient(base_url=IDP_URL + "/", app_id=APP_ID, transport=FakeTransport())
    assert client.start_url == START_URL

    with pytest.raises(ConfigError):
        AzureAdClient(base_url="", app_id=APP_ID)
    with pytest.raises(ConfigError):
        AzureAdClient(base_url=IDP_URL, app_id="")


def test_missing_credentials_fail_before_any_request() -> None:
    t = FakeTransport()
    client = _client(t)
    with pytest.raises(ConfigError):
        client.authenticate(LoginCredentials(username="user@example.com", password=""))
    with pytest.raises(ConfigError):
        client.authenticate(LoginCredentials(username="", password="pw"))
    assert t.calls == []


def test_full_flow_with_push_mfa_and_kmsi_redirect() -> None:
    t = FakeTransport()
    _route_sign_in(t)
    t.add("POST", LOGIN_POST_URL, config_page("ConvergedTFA", _tfa_cfg()))
    t.add("POST", BEGIN_URL, {"Success": True, "AuthMethodId": "PhoneAppNotification", "Ctx": "c1", "FlowToken": "f1", "SessionId": "s1"})
    t.add("POST", END_URL, {"Success": False, "Retry": True, "AuthMethodId": "PhoneAppNotification", "Ctx": "c2", "FlowToken": "f2", "SessionId": "s1"})
    t.add("POST", END_URL, {"Success": True, "AuthMethodId": "PhoneAppNotification", "Ctx": "c3", "FlowToken": "f3", "SessionId": "s1"})
    t.add("POST", PROCESS_AUTH_URL, config_page("KmsiInterrupt", {"urlPost": "/kmsi", "sFT": "ft-kmsi", "sCtx": "ctx-kmsi"}))
    t.add("POST", KMSI_URL, "", status=302, headers={"Location": AFTER_KMSI_URL})
    t.add("GET", AFTER_KMSI_URL, _saml_page())
    prompter = ScriptedPrompter()

    assertion = _client(t, prompter).authenticate(CREDS)

    assert assertion == ASSERTION
    assert [(c.method, c.url) for c in t.calls] == [
        ("GET", START_URL),
        ("POST", CRED_TYPE_URL),
        ("POST", LOGIN_POST_URL),
        ("POST", BEGIN_URL),
        ("POST", END_URL),
        ("POST", END_URL),
        ("POST", PROCESS_AUTH_URL),
        ("POST", KMSI_URL),
        ("GET", AFTER_KMSI_URL),
    ]
    # Nothing is posted to the service provider.
    assert t.calls_to(AWS_ACS) == []
    assert prompter.notices == ["Phone approval required."]

    cred_call = t.calls_to(CRED_TYPE_URL)[0]
    assert cred_call.json_body["username"] == CREDS.username
    assert cred_call.json_body["flowToken"] == "ft-signin"
    assert cred_call.json_body["originalRequest"] == "ctx-signin"
    assert cred_call.json_body["isOtherIdpSupported"] is True
    assert cred_call.headers["canary"] == "api-canary-1"
    assert cred_call.headers["client-request-id"] == "corr-1"
    assert cred_call.headers["hpgid"] == "1104"
    assert cred_call.headers["hpgact"] == "1800"
    assert cred_call.headers["Referer"] == SIGNIN_URL

    login_call = t.calls_to(LOGIN_POST_URL)[0]
    assert login_call.form == {
        "canary": "canary-1",
        "hpgrequestid": "sess-0",
        "flowToken": "ft-signin",
        "ctx": "ctx-signin",
        "login": CREDS.username,
        "loginfmt": CREDS.username,
        "passwd": "hunter2",
    }

    process_call = t.calls_to(PROCESS_AUTH_URL)[0]
    assert process_call.form == {
        "request": "c3",
        "mfaAuthMethod": "PhoneAppNotification",
        "canary": "canary-2",
        "login": CREDS.username,
        "flowToken": "f3",
    }

    kmsi_call = t.calls_to(KMSI_URL)[0]
    assert kmsi_call.form == {"flowToken": "ft-kmsi", "ctx": "ctx-kmsi", "LoginOptions": "1"}
    assert kmsi_call.follow_redirects is False
    assert t.calls_to(AFTER_KMSI_URL)[0].follow_redirects is True
    assert t.follow_redirects is True


def test_custom_flow_token_name_is_used_as_field_name() -> None:
    t = FakeTransport()
    _route_sign_in(t, _sign_in_cfg(sFTName="flowTokenX"))
    t.add("POST", LOGIN_POST_URL, _saml_page())

    _client(t).authenticate(CREDS)

    form = t.calls_to(LOGIN_POST_URL)[0].form
    assert form["flowTokenX"] == "ft-signin"
    assert "flowToken" not in form


def test_federated_account_posts_to_federation_server_only() -> None:
    adfs_url = "https://adfs.example.com/adfs/ls/?username=user%40example.com&wa=wsignin1.0"
    adfs_post = "https://adfs.example.com/adfs/ls/?client-request-id=abc"
    adfs_page = """
    <html><body><form method="post" id="loginForm" action="/adfs/ls/?client-request-id=abc">
      <input id="userNameInput" name="UserName" type="email" value="" />
      <input id="passwordInput" name="Password" type="password" />
      <input id="kmsiInput" type="checkbox" name="Kmsi" value="true" />
      <input id="optionForms" type="hidden" name="AuthMethod" value="" />
    </form></body></html>
    """
    t = FakeTransport()
    _route_sign_in(t, cred_type={"Credentials": {"FederationRedirectUrl": adfs_url}})
    t.add("GET", adfs_url, adfs_page)
    t.add("POST", adfs_post, _saml_page())

    assert _client(t).authenticate(CREDS) == ASSERTION

    assert t.calls_to(LOGIN_POST_URL) == []
    assert t.calls_to(adfs_post)[0].form == {
        "UserName": CREDS.username,
        "Password": "hunter2",
        "Kmsi": "true",
        "AuthMethod": "FormsAuthentication",
    }


def test_saml_request_relay_reposts_fields_verbatim() -> None:
    relay_action = f"{LOGIN_HOST}/tenant-id/saml2"
    t = FakeTransport()
    t.add("GET", START_URL, form_page(relay_action, {"SAMLRequest": "req-blob", "RelayState": ""}))
    t.add("POST", relay_action, _saml_page())

    assert _client(t).authenticate(CREDS) == ASSERTION
    assert t.calls_to(relay_action)[0].data == [("SAMLRequest", "req-blob"), ("RelayState", "")]


def test_hidden_form_without_assertion_is_relayed_to_resolved_action() -> None:
    t = FakeTransport()
    t.add("GET", START_URL, form_page("/login.srf", {"wa": "wsignin1.0", "wresult": "x"}), final_url=SIGNIN_URL)
    t.add("POST", f"{LOGIN_HOST}/login.srf", _saml_page())

    assert _client(t).authenticate(CREDS) == ASSERTION


def test_returns_assertion_without_further_requests() -> None:
    t = FakeTransport()
    t.add("GET", START_URL, _saml_page())

    assert _client(t).authenticate(CREDS) == ASSERTION
    assert len(t.calls) == 1


def test_unknown_page_raises_unrecognized() -> None:
    t = FakeTransport()
    t.add("GET", START_URL, "<html><body>Service unavailable</body></html>", status=503)

    with pytest.raises(UnrecognizedPageError) as exc:
        _client(t).authenticate(CREDS)
    assert exc.value.step == "Unknown"
    assert str(exc.value).startswith("Unknown failed: ")
    assert "status=503" in str(exc.value)


def test_unknown_page_with_server_error_code_raises_server_auth() -> None:
    t = FakeTransport()
    t.add(
        "GET",
        START_URL,
        config_page("ConvergedError", {"sErrorCode": "50126", "sErrTxt": "Invalid username or password."}),
    )

    with pytest.raises(ServerAuthError) as exc:
        _client(t).authenticate(CREDS)
    assert exc.value.code == "50126"
    assert exc.value.kind == "server_auth"
    assert "authentication error: 50126 - Invalid username or password." in str(exc.value)


def test_sign_in_page_with_blocking_error_does_not_post_password() -> None:
    t = FakeTransport()
    _route_sign_in(t, _sign_in_cfg(sErrorCode="50053", sErrTxt="Account is locked."))

    with pytest.raises(ServerAuthError) as exc:
        _client(t).authenticate(CREDS)
    assert exc.value.step == "ConvergedSignIn"
    assert t.calls_to(LOGIN_POST_URL) == []


def test_tfa_skip_registration_link_is_followed() -> None:
    t = FakeTransport()
    t.add(
        "GET",
        START_URL,
        config_page("ConvergedTFA", _tfa_cfg(urlSkipMfaRegistration="/skip?x=1")),
        final_url=SIGNIN_URL,
    )
    t.add("GET", f"{LOGIN_HOST}/skip?x=1", _saml_page())

    assert _client(t).authenticate(CREDS) == ASSERTION
    assert t.calls_to(BEGIN_URL) == []


def test_tfa_without_methods_is_contract_error() -> None:
    t = FakeTransport()
    t.add("GET", START_URL, config_page("ConvergedTFA", _tfa_cfg(arrUserProofs=[])))

    with pytest.raises(ProtocolContractError) as exc:
        _client(t).authenticate(CREDS)
    assert exc.value.step == "ConvergedTFA"


def test_marker_without_config_is_contract_error() -> None:
    t = FakeTransport()
    t.add("GET", START_URL, "<html><script>var p='ConvergedTFA';</script></html>")

    with pytest.raises(ProtocolContractError) as exc:
        _client(t).authenticate(CREDS)
    assert str(exc.value).startswith("ConvergedTFA failed: ")


def test_transport_errors_are_wrapped_with_cause_and_step() -> None:
    t = FakeTransport()
    boom = requests.ConnectionError("connection refused")
    t.add("GET", START_URL, boom)

    with pytest.raises(TransportError) as exc:
        _client(t).authenticate(CREDS)
    assert exc.value.step == "start"
    assert exc.value.__cause__ is boom

    t = FakeTransport()
    t.add("GET", START_URL, config_page("ConvergedSignIn", _sign_in_cfg()))
    t.add("POST", CRED_TYPE_URL, requests.Timeout("read timed out"))
    with pytest.raises(TransportError) as exc:
        _client(t).authenticate(CREDS)
    assert exc.value.step == "ConvergedSignIn"
    assert isinstance(exc.value.__cause__, requests.Timeout)


def test_kmsi_failure_restores_redirect_setting() -> None:
    t = FakeTransport()
    t.add("GET", START_URL, config_page("KmsiInterrupt", {"urlPost": KMSI_URL, "sFT": "f", "sCtx": "c"}))
    t.add("POST", KMSI_URL, requests.ConnectionError("reset"))

    with pytest.raises(TransportError):
        _client(t).authenticate(CREDS)
    assert t.follow_redirects is True


def test_kmsi_non_redirect_response_is_next_page() -> None:
    t = FakeTransport()
    t.add("GET", START_URL, config_page("KmsiInterrupt", {"urlPost": KMSI_URL, "sFT": "f", "sCtx": "c"}))
    t.add("POST", KMSI_URL, _saml_page())

    assert _client(t).authenticate(CREDS) == ASSERTION


def test_capture_dir_saves_each_page(tmp_path: Path) -> None:
    relay_action = f"{LOGIN_HOST}/tenant-id/saml2"
    t = FakeTransport()
    t.add("GET", START_URL, form_page(relay_action, {"SAMLRequest": "req"}))
    t.add("POST", relay_action, _saml_page())

    _client(t, capture_dir=str(tmp_path / "pages")).authenticate(CREDS)

    names = sorted(p.name for p in (tmp_path / "pages").iterdir())
    assert names == ["step_01_SAMLRequest.html", "step_02_HiddenForm.html"]


def test_max_steps_stops_a_looping_flow() -> None:
    relay_action = f"{LOGIN_HOST}/tenant-id/saml2"
    loop_page = form_page(relay_action, {"SAMLRequest": "req"})
    t = FakeTransport()
    t.add("GET", START_URL, loop_page)
    t.add("POST", relay_action, loop_page)
    t.add("POST", relay_action, loop_page)

    with pytest.raises(AuthFlowError) as exc:
        _client(t, max_steps=2).authenticate(CREDS)
    assert "within 2 pages" in str(exc.value)
    assert len(t.calls) == 3


def test_unknown_page_with_malformed_config_raises_unrecognized() -> None:
    t = FakeTransport()
    t.add("GET", START_URL, config_page("ConvergedError", {"sErrorCode": 50126, "sErrTxt": "x"}))

    with pytest.raises(UnrecognizedPageError) as exc:
        _client(t).authenticate(CREDS)
    assert exc.value.step == "Unknown"
    assert len(t.calls) == 1
