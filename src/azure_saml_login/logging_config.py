import logging
import os
import re
from pathlib import Path
from typing import Optional


_SENSITIVE_KEYS = ("password", "passwd", "secret", "flowtoken", "token", "canary", "assertion", "samlresponse", "mfa_code")
_SENSITIVE_RE = re.compile(
    r"(?i)\b(" + "|".join(_SENSITIVE_KEYS) + r")(\s*[=:]\s*)([^\s,;&]+)"
)


class RedactingFilter(logging.Filter):
    """Mask `key=value` / `key: value` pairs for credential-like keys in formatted log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        redacted = _SENSITIVE_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}[REDACTED]", msg)
        if redacted != msg:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str = "INFO", file_path: Optional[str] = None) -> None:
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    redact = RedactingFilter()
    for h in handlers:
        h.addFilter(redact)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=handlers,
        force=True,  # allow configure_logging() to be called multiple times (CLI does this)
    )

    # Reduce noise from chatty libraries
    for noisy in ("urllib3", "charset_normalizer"):
        logging.getLogger(noisy).setLevel(os.getenv("NOISY_LOG_LEVEL", "WARNING"))
