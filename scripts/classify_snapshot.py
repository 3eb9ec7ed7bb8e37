#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


_MASKED_FIELDS = {"passwd", "password", "samlresponse", "flowtoken", "canary", "ctx", "request"}


def _ensure_src_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src = repo_root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def _read_text(path: str) -> str:
    p = Path(path)
    if not p.exists():
        raise SystemExit(f"File not found: {p}")
    return p.read_text(encoding="utf-8", errors="replace")


def _mask(name: str, value: str) -> str:
    if name.lower() in _MASKED_FIELDS and value:
        return f"<{len(value)} chars>"
    return value


def main(argv: list[str] | None = None) -> int:
    _ensure_src_on_path()

    from azure_saml_login.azuread.classifier import classify_text
    from azure_saml_login.azuread.extract import find_embedded_config, is_hidden_form, parse_form
    from azure_saml_login.errors import ProtocolContractError

    p = argparse.ArgumentParser(
        prog="classify_snapshot",
        description=(
            "Classify saved IdP pages (from --capture-dir step_*.html) offline and show what the login flow would see.\n"
            "No network access; token-like values are masked."
        ),
    )
    p.add_argument("files", nargs="+", help="One or more saved HTML pages")
    p.add_argument("--out", default="", help="Optional output JSON path (otherwise prints to stdout)")
    args = p.parse_args(argv)

    results = []
    for path in args.files:
        html = _read_text(path)
        entry: dict = {"file": path, "page_type": classify_text(html).value}

        cfg = find_embedded_config(html)
        if cfg is not None:
            entry["config_keys"] = sorted(cfg)
            if cfg.get("sErrorCode"):
                entry["error"] = {"code": cfg.get("sErrorCode"), "text": cfg.get("sErrTxt", "")}
            proofs = cfg.get("arrUserProofs") or []
            if proofs:
                entry["mfa_methods"] = [
                    {"id": pr.get("authMethodId"), "default": bool(pr.get("isDefault"))} for pr in proofs
                ]

        if is_hidden_form(html):
            try:
                form = parse_form(html)
            except ProtocolContractError:
                form = None
            if form is not None:
                entry["form"] = {
                    "action": form.action,
                    "fields": {k: _mask(k, v) for k, v in form.fields.items()},
                }
        results.append(entry)

    out_json = json.dumps({"pages": results}, indent=2, sort_keys=False)
    if args.out:
        Path(args.out).write_text(out_json, encoding="utf-8")
    else:
        print(out_json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
