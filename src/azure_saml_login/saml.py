from __future__ import annotations

import base64
import binascii
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Iterable, List, Optional


ROLE_ATTRIBUTE = "https://aws.amazon.com/SAML/Attributes/Role"
SESSION_DURATION_ATTRIBUTE = "https://aws.amazon.com/SAML/Attributes/SessionDuration"


class SamlParseError(ValueError):
    pass


@dataclass(frozen=True)
class SamlRole:
    role_arn: str
    principal_arn: str
    name: str

    @property
    def account_id(self) -> str:
        # arn:aws:iam::123456789012:role/Name
        parts = self.role_arn.split(":")
        return parts[4] if len(parts) >= 5 else ""

    def __str__(self) -> str:
        return f"{self.name} ({self.role_arn})"


def _local(tag: str) -> str:
    # "{urn:oasis:names:tc:SAML:2.0:assertion}Attribute" -> "Attribute"
    return tag.rsplit("}", 1)[-1]


def decode_assertion(assertion: str) -> bytes:
    try:
        return base64.b64decode((assertion or "").strip(), validate=False)
    except (binascii.Error, ValueError) as e:
        raise SamlParseError(f"failed to decode SAML assertion: {e}") from e


def _parse(assertion: str) -> ET.Element:
    raw = decode_assertion(assertion)
    try:
        return ET.fromstring(raw)
    except ET.ParseError as e:
        raise SamlParseError(f"failed to parse SAML XML: {e}") from e


def _attribute_values(root: ET.Element, name: str) -> List[str]:
    values: List[str] = []
    for el in root.iter():
        if _local(el.tag) != "Attribute" or el.get("Name") != name:
            continue
        for child in el:
            if _local(child.tag) == "AttributeValue":
                text = (child.text or "").strip()
                if text:
                    values.append(text)
    return values


def extract_roles(assertion: str) -> List[str]:
    roles = _attribute_values(_parse(assertion), ROLE_ATTRIBUTE)
    if not roles:
        raise SamlParseError("no AWS roles found in SAML assertion")
    return roles


def extract_session_duration(assertion: str) -> int:
    """Seconds from the SessionDuration attribute; 0 when absent or not an integer."""
    for value in _attribute_values(_parse(assertion), SESSION_DURATION_ATTRIBUTE):
        try:
            return int(value)
        except ValueError:
            continue
    return 0


def extract_destination(assertion: str) -> str:
    root = _parse(assertion)
    if _local(root.tag) == "Response" and root.get("Destination"):
        return root.get("Destination") or ""
    for el in root.iter():
        if _local(el.tag) == "Response" and el.get("Destination"):
            return el.get("Destination") or ""
    return ""


def parse_role(value: str) -> SamlRole:
    """
    Parse "principal_arn,role_arn" (either order) into a SamlRole.
    """
    parts = [p.strip() for p in value.split(",") if p.strip()]
    if len(parts) != 2:
        raise SamlParseError(f"invalid role value {value!r}: expected two comma-separated ARNs")

    role_arn: Optional[str] = None
    principal_arn: Optional[str] = None
    for part in parts:
        if ":role/" in part:
            role_arn = part
        elif ":saml-provider/" in part:
            principal_arn = part
    if not role_arn or not principal_arn:
        raise SamlParseError(f"invalid role value {value!r}: need one role ARN and one saml-provider ARN")

    return SamlRole(role_arn=role_arn, principal_arn=principal_arn, name=role_arn.rsplit("/", 1)[-1])


def parse_roles(values: Iterable[str]) -> List[SamlRole]:
    return [parse_role(v) for v in values]
