from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .azuread.client import AzureAdClient
from .azuread.transport import TransportSession
from .config import AppConfig, list_profiles, load_config
from .errors import AuthFlowError, ConfigError
from .logging_config import configure_logging
from .models import LoginCredentials
from .prompter import Prompter
from .saml import (
    SamlParseError,
    SamlRole,
    extract_destination,
    extract_roles,
    extract_session_duration,
    parse_roles,
)
from .util.debug_bundle import create_debug_bundle


logger = logging.getLogger("azure_saml_login")

EXIT_OK = 0
EXIT_AUTH_FAILED = 1
EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="azure-saml-login")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    login = sub.add_parser("login", help="Sign in to Azure AD and print the SAML assertion")
    login.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    login.add_argument("--profile", default="", help="Named profile from the YAML 'profiles:' section")
    login.add_argument("--username", default="", help="Override the configured username")
    login.add_argument(
        "--mfa-token",
        default="",
        help="One-time code for OTP MFA methods (otherwise you are prompted when the server asks for one).",
    )
    login.add_argument(
        "--output",
        choices=("assertion", "roles", "role", "json"),
        default="assertion",
        help="What to print on success (default: the base64 assertion). 'role' prints one chosen role ARN.",
    )
    login.add_argument(
        "--role-arn",
        default="",
        help="With --output role: pick this role instead of prompting when the assertion has several.",
    )
    login.add_argument(
        "--capture-dir",
        default="",
        help="Save every IdP page as HTML under this directory; a zip bundle is written on failure.",
    )
    login.add_argument(
        "--mfa-timeout",
        type=float,
        default=None,
        help="Give up waiting for MFA approval after this many seconds (default: mfa.timeout_seconds, 0 = wait).",
    )

    profiles = sub.add_parser("list-profiles", help="List profile names defined in the YAML config")
    profiles.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")

    inspect = sub.add_parser("inspect-assertion", help="Decode a saved SAML assertion and show roles/session duration")
    inspect.add_argument("--file", required=True, help="File holding the base64 assertion ('-' for stdin)")

    return p


def main(argv: Optional[List[str]] = None, *, prompter: Optional[Prompter] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    if args.cmd == "list-profiles":
        try:
            names = list_profiles(args.config)
        except ConfigError as e:
            logger.error("Invalid config: %s", e)
            return EXIT_CONFIG_ERROR
        for name in names:
            print(name)
        return EXIT_OK

    if args.cmd == "inspect-assertion":
        try:
            if args.file == "-":
                assertion = sys.stdin.read().strip()
            else:
                assertion = Path(args.file).read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.error("Cannot read assertion file: %s", e)
            return EXIT_CONFIG_ERROR
        try:
            print(json.dumps(_describe_assertion(assertion, include_assertion=False), indent=2))
        except SamlParseError as e:
            logger.error("Invalid SAML assertion: %s", e)
            return EXIT_AUTH_FAILED
        return EXIT_OK

    if args.cmd == "login":
        try:
            cfg = load_config(args.config, profile=args.profile or None)
        except ConfigError as e:
            logger.error("Invalid config: %s", e)
            return EXIT_CONFIG_ERROR
        configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path or None)
        return _login(cfg, args, prompter or Prompter())

    raise SystemExit(f"Unknown command: {args.cmd}")


def _login(cfg: AppConfig, args: argparse.Namespace, prompter: Prompter) -> int:
    if not cfg.idp.app_id:
        logger.error("No application id configured. Set AZURE_APP_ID in .env or idp.app_id in the YAML config.")
        return EXIT_CONFIG_ERROR

    username = (args.username or cfg.idp.username).strip()
    if not username:
        username = prompter.string("Username").strip()
    password = cfg.idp.password or prompter.password("Password")
    if not username or not password:
        logger.error("Username and password are required.")
        return EXIT_CONFIG_ERROR

    creds = LoginCredentials(
        username=username,
        password=password,
        mfa_token=(args.mfa_token or cfg.idp.mfa_token).strip(),
    )

    capture_dir = args.capture_dir or cfg.debug.capture_dir
    mfa_timeout = args.mfa_timeout if args.mfa_timeout is not None else cfg.mfa.timeout_seconds

    transport = TransportSession(timeout_seconds=cfg.http.timeout_seconds, verify_tls=cfg.http.verify_tls)
    logger.info("Starting login (profile=%s user=%s url=%s)", cfg.profile or "default", username, cfg.idp.url)
    t0 = time.time()
    try:
        with AzureAdClient(
            base_url=cfg.idp.url,
            app_id=cfg.idp.app_id,
            transport=transport,
            prompter=prompter,
            mfa_poll_interval=cfg.mfa.default_poll_interval_seconds,
            mfa_timeout_seconds=mfa_timeout or None,
            capture_dir=capture_dir,
        ) as client:
            assertion = client.authenticate(creds)
    except AuthFlowError as e:
        logger.error("Login failed (kind=%s seconds=%.2f): %s", e.kind, time.time() - t0, e)
        if e.__cause__ is not None:
            logger.debug("Caused by: %r", e.__cause__)
        if capture_dir:
            try:
                bundle = create_debug_bundle(
                    capture_dir=capture_dir,
                    log_file=cfg.logging.file_path,
                    out_dir=capture_dir,
                    profile=cfg.profile,
                )
                logger.error("Wrote debug bundle: %s", bundle)
            except OSError:
                logger.debug("Failed to create debug bundle.", exc_info=True)
        return EXIT_AUTH_FAILED

    logger.info("Login complete (seconds=%.2f)", time.time() - t0)

    if args.output == "assertion":
        print(assertion)
        return EXIT_OK

    if args.output == "roles":
        try:
            roles = parse_roles(extract_roles(assertion))
        except SamlParseError as e:
            logger.error("Login succeeded but the assertion has no usable roles: %s", e)
            return EXIT_AUTH_FAILED
        for role in roles:
            print(role.role_arn)
        return EXIT_OK

    if args.output == "role":
        try:
            roles = parse_roles(extract_roles(assertion))
        except SamlParseError as e:
            logger.error("Login succeeded but the assertion has no usable roles: %s", e)
            return EXIT_AUTH_FAILED
        role = _choose_role(roles, args.role_arn, prompter)
        if role is None:
            logger.error("Role %s not found in SAML assertion", args.role_arn)
            return EXIT_AUTH_FAILED
        print(role.role_arn)
        return EXIT_OK

    try:
        print(json.dumps(_describe_assertion(assertion, include_assertion=True), indent=2))
    except SamlParseError as e:
        logger.error("Login succeeded but the assertion could not be decoded: %s", e)
        return EXIT_AUTH_FAILED
    return EXIT_OK


def _choose_role(roles: List[SamlRole], role_arn: str, prompter: Prompter) -> Optional[SamlRole]:
    if role_arn:
        return next((r for r in roles if r.role_arn == role_arn), None)
    if len(roles) == 1:
        logger.info("Using role: %s", roles[0].name)
        return roles[0]
    idx = prompter.select("Select an AWS role:", [f"{r.name} (Account: {r.account_id})" for r in roles])
    return roles[idx]


def _describe_assertion(assertion: str, *, include_assertion: bool) -> dict:
    try:
        roles = parse_roles(extract_roles(assertion))
    except SamlParseError:
        # Not every application releases AWS role attributes; still decode the rest.
        logger.debug("No AWS role attributes in assertion.", exc_info=True)
        roles = []

    out: dict = {}
    if include_assertion:
        out["assertion"] = assertion
    out["destination"] = extract_destination(assertion)
    out["session_duration"] = extract_session_duration(assertion)
    out["roles"] = [
        {
            "name": r.name,
            "role_arn": r.role_arn,
            "principal_arn": r.principal_arn,
            "account_id": r.account_id,
        }
        for r in roles
    ]
    return out
