from __future__ import annotations

import getpass
import sys
from typing import Callable, Optional, Sequence, TextIO


class Prompter:
    """
    Interactive terminal input. The login flow uses `string` (MFA codes) and `notify`;
    the CLI uses `string`/`password` for missing credentials and `select` to pick a role.
    """

    def __init__(
        self,
        *,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        getpass_fn: Callable[[str], str] = getpass.getpass,
    ) -> None:
        self._stdin = stdin
        self._stdout = stdout
        self._getpass = getpass_fn

    @property
    def _in(self) -> TextIO:
        return self._stdin or sys.stdin

    @property
    def _out(self) -> TextIO:
        return self._stdout or sys.stdout

    def _readline(self, prompt: str) -> str:
        self._out.write(prompt)
        self._out.flush()
        line = self._in.readline()
        if not line:
            raise EOFError("No input available (stdin closed)")
        return line.strip()

    def string(self, prompt: str, default: str = "") -> str:
        label = f"{prompt} [{default}]: " if default else f"{prompt}: "
        value = self._readline(label)
        return value or default

    def password(self, prompt: str) -> str:
        return self._getpass(f"{prompt}: ")

    def select(self, prompt: str, options: Sequence[str]) -> int:
        """Return the 0-based index of the chosen option."""
        if not options:
            raise ValueError("select() needs at least one option")
        self._out.write(prompt + "\n")
        for i, opt in enumerate(options, start=1):
            self._out.write(f"  [{i}] {opt}\n")
        while True:
            raw = self._readline("Selection: ")
            if not raw:
                continue
            if raw.lower() in {"q", "quit", "exit"}:
                raise SystemExit("Aborted.")
            if raw.isdigit():
                n = int(raw)
                if 1 <= n <= len(options):
                    return n - 1
            self._out.write(f"Enter a number from 1 to {len(options)} (or 'q' to abort).\n")

    def notify(self, message: str) -> None:
        self._out.write(message + "\n")
        self._out.flush()
