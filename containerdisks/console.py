"""Guest serial console automation.

The login flow is an explicit state machine driven by regular expressions matched
against the console byte stream. It only needs a ``ConsoleSession``, so it can be fed a
scripted session in tests instead of a live VM.
"""

from __future__ import annotations

import enum
import os
import re
import selectors
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional, Pattern, Protocol, Sequence, Tuple, Union

from containerdisks.constants import PROMPT_EXPRESSION, SECURE_BOOT_EXPRESSION, VIRTCTL
from containerdisks.exceptions import ConsoleTimeoutError, LoginIncorrectError, VerificationError
from containerdisks.utils import log

MAX_BUFFER = 64 * 1024
READ_SLICE = 0.5


class ConsoleSession(Protocol):
    def send(self, text: str) -> None: ...

    def read(self, timeout: float) -> bytes: ...

    def close(self) -> None: ...


class VirtctlConsole:
    """Console session backed by ``virtctl console`` running on pipes."""

    def __init__(self, vmi_name: str, namespace: str, kubeconfig: Optional[str] = None, virtctl: str = VIRTCTL) -> None:
        cmd = [virtctl, "console", vmi_name, "--namespace", namespace]
        if kubeconfig:
            cmd.extend(["--kubeconfig", kubeconfig])
        log("DEBUG", f"Running: {' '.join(cmd)}")
        try:
            self._proc = subprocess.Popen(cmd, stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
        except FileNotFoundError:
            raise VerificationError("virtctl is not installed (required for console access)")
        self._selector = selectors.DefaultSelector()
        self._selector.register(self._proc.stdout, selectors.EVENT_READ)

    def send(self, text: str) -> None:
        try:
            self._proc.stdin.write(text.encode("utf-8"))
            self._proc.stdin.flush()
        except (BrokenPipeError, OSError) as exc:
            raise VerificationError(f"console connection lost: {exc}") from exc

    def read(self, timeout: float) -> bytes:
        if not self._selector.select(timeout=max(timeout, 0)):
            return b""
        data = os.read(self._proc.stdout.fileno(), 4096)
        if not data:
            # EOF keeps the pipe readable, so the process may not be reaped yet
            raise VerificationError(f"console closed (exit status {self._proc.poll()})")
        return data

    def close(self) -> None:
        self._selector.close()
        if self._proc.poll() is None:
            self._proc.terminate()
            try:
                self._proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._proc.kill()
                self._proc.wait()


PatternLike = Union[str, Pattern[str]]


class Expecter:
    """Accumulates console output and waits for regular expressions."""

    def __init__(self, session: ConsoleSession) -> None:
        self.session = session
        self.buffer = ""

    def send(self, text: str) -> None:
        self.session.send(text)

    def expect(self, patterns: Sequence[PatternLike], timeout: float) -> Tuple[int, "re.Match[str]"]:
        """Wait until one of ``patterns`` matches; return its index and the match.

        The earliest match in the stream wins and output up to its end is consumed.
        """
        compiled = [re.compile(p) if isinstance(p, str) else p for p in patterns]
        deadline = time.monotonic() + timeout
        while True:
            best: Optional[Tuple[int, "re.Match[str]"]] = None
            for idx, pattern in enumerate(compiled):
                match = pattern.search(self.buffer)
                if match and (best is None or match.start() < best[1].start()):
                    best = (idx, match)
            if best is not None:
                self.buffer = self.buffer[best[1].end():]
                return best
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                wanted = ", ".join(p.pattern for p in compiled)
                raise ConsoleTimeoutError(f"timed out after {timeout:g}s waiting for {wanted}")
            chunk = self.session.read(min(remaining, READ_SLICE))
            if chunk:
                self.buffer = (self.buffer + chunk.decode("utf-8", errors="replace"))[-MAX_BUFFER:]


def ret_value(code: str) -> str:
    """Expression matching the output of ``echo $?`` followed by a fresh prompt."""
    return "\n" + re.escape(code) + r"\r?\n.*" + PROMPT_EXPRESSION


@dataclass
class LoginOptions:
    username: str
    password: str
    do_not_login_regexp: str
    login_successful_regexp: str
    login_prompt_regexp: str
    probe_timeout: float = 5.0
    login_timeout: float = 120.0
    retry_timeout: float = 60.0
    configure_timeout: float = 30.0
    max_prompt_repeats: int = 10

    @classmethod
    def for_user(cls, username: str, password: str, vmi_name: str, **timeouts: float) -> "LoginOptions":
        user, name = re.escape(username), re.escape(vmi_name)
        return cls(
            username=username,
            password=password,
            do_not_login_regexp=(
                rf"(\[{user}@(localhost|{name}) ~\]\$ |\[root@(localhost|{name}) {user}\]\# )"
            ),
            login_successful_regexp=rf"\[{user}@(localhost|{name}) ~\]\$ ",
            # A bare "login: " would also match "Last failed login: ..." banners
            login_prompt_regexp=rf"(localhost|{name}) login: ",
            **timeouts,
        )


class LoginState(enum.Enum):
    START = "start"
    CHECK_ALREADY_LOGGED_IN = "check-already-logged-in"
    ALREADY_LOGGED_IN = "already-logged-in"
    AWAITING_LOGIN_PROMPT = "awaiting-login-prompt"
    AWAITING_PASSWORD_PROMPT = "awaiting-password-prompt"
    LOGIN_INCORRECT = "login-incorrect"
    LOGGED_IN = "logged-in"
    SHELL_CONFIGURED = "shell-configured"


_LOGIN, _PASSWORD, _INCORRECT, _SUCCESS = range(4)


class LoginAutomaton:
    """Logs into a guest console and leaves a configured root shell behind."""

    def __init__(self, session: ConsoleSession, options: LoginOptions) -> None:
        self.expecter = Expecter(session)
        self.options = options
        self.state = LoginState.START
        self.history: List[LoginState] = [LoginState.START]

    def _transition(self, state: LoginState) -> None:
        log("DEBUG", f"Console login: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def run(self) -> LoginState:
        """Drive the machine to a terminal state.

        Returns ALREADY_LOGGED_IN or SHELL_CONFIGURED; raises LoginIncorrectError when the
        guest rejects the credentials and ConsoleTimeoutError when prompts never show up.
        """
        self.expecter.send("\n")
        self._transition(LoginState.CHECK_ALREADY_LOGGED_IN)
        if self._probe_logged_in():
            self._transition(LoginState.ALREADY_LOGGED_IN)
            return self.state

        try:
            self._login(self.options.login_timeout)
        except ConsoleTimeoutError as exc:
            # Daemon output sometimes tears the login prompt apart; give it one more go
            log("WARN", f"Login attempt failed, retrying: {exc}")
            self._login(self.options.retry_timeout)

        self._configure_console()
        self._transition(LoginState.SHELL_CONFIGURED)
        return self.state

    def _probe_logged_in(self) -> bool:
        self.expecter.send("\n")
        try:
            self.expecter.expect([self.options.do_not_login_regexp], self.options.probe_timeout)
        except ConsoleTimeoutError:
            return False
        return True

    def _login(self, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        self._transition(LoginState.AWAITING_LOGIN_PROMPT)
        self.expecter.send("\n")
        self.expecter.send("\n")
        patterns = [
            self.options.login_prompt_regexp,
            r"Password:",
            r"Login incorrect",
            self.options.login_successful_regexp,
        ]
        seen = {_LOGIN: 0, _PASSWORD: 0}
        while True:
            idx, _ = self.expecter.expect(patterns, self._remaining(deadline, timeout))
            if idx == _INCORRECT:
                self._transition(LoginState.LOGIN_INCORRECT)
                raise LoginIncorrectError(f"login failed for user '{self.options.username}'")
            if idx == _SUCCESS:
                self._transition(LoginState.LOGGED_IN)
                break
            seen[idx] += 1
            if seen[idx] > self.options.max_prompt_repeats:
                raise VerificationError(f"console prompt {patterns[idx]!r} repeated too often")
            if idx == _LOGIN:
                self.expecter.send(f"{self.options.username}\n")
                self._transition(LoginState.AWAITING_PASSWORD_PROMPT)
            else:
                if self.state is LoginState.AWAITING_LOGIN_PROMPT:
                    self._transition(LoginState.AWAITING_PASSWORD_PROMPT)
                self.expecter.send(f"{self.options.password}\n")

        self.expecter.send("sudo su\n")
        self.expecter.expect([PROMPT_EXPRESSION], self._remaining(deadline, timeout))

    @staticmethod
    def _remaining(deadline: float, timeout: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ConsoleTimeoutError(f"login did not finish within {timeout:g}s")
        return remaining

    def _configure_console(self) -> None:
        timeout = self.options.configure_timeout
        deadline = time.monotonic() + timeout
        for command in ("stty cols 500 rows 500", "dmesg -n 1"):
            self.expecter.send(f"{command}\n")
            self.expecter.expect([PROMPT_EXPRESSION], self._remaining(deadline, timeout))
            self.expecter.send("echo $?\n")
            self.expecter.expect([ret_value("0")], self._remaining(deadline, timeout))


def expect_secure_boot(session: ConsoleSession, timeout: float = 180.0) -> None:
    """Wait for the guest kernel to report that secure boot is enabled."""
    Expecter(session).expect([SECURE_BOOT_EXPRESSION], timeout)
