"""
Attribution of changes to an account.

A resolver answers "who owns this file?" and never fails: any error, missing
file or unsupported platform yields the configured default identity.

Variants:
- NullOwnerResolver: always the default identity
- StatOwnerResolver: POSIX uid of the file, mapped through the passwd db
- SubprocessOwnerResolver: one long-lived helper process (PowerShell's
  Get-Acl on Windows) queried over a line protocol, restarted on exit
"""

from __future__ import annotations

import os
import subprocess
import sys
import threading
from collections import deque
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Protocol, Sequence

from loguru import logger

from .events import ChangeEvent, ChangeType

# Reads one path per line on stdin, answers one owner per line on stdout.
POWERSHELL_OWNER_SCRIPT = r"""
$OutputEncoding = [System.Text.Encoding]::UTF8
while ($line = [Console]::In.ReadLine()) {
    try {
        if ([System.IO.File]::Exists($line) -or [System.IO.Directory]::Exists($line)) {
            $owner = (Get-Acl -Path $line -ErrorAction Stop).Owner
            [Console]::Out.WriteLine($owner)
        } else {
            [Console]::Out.WriteLine("ENOENT")
        }
    } catch {
        [Console]::Out.WriteLine("ERROR")
    }
}
"""

POWERSHELL_OWNER_COMMAND = (
    "powershell.exe",
    "-NoProfile",
    "-ExecutionPolicy",
    "Bypass",
    "-Command",
    POWERSHELL_OWNER_SCRIPT,
)

_FAILURE_REPLIES = frozenset({"", "ERROR", "ENOENT"})


class OwnerResolver(Protocol):
    """Protocol for looking up the account that owns a path."""

    default_user: str

    def resolve(self, path: str) -> str:
        """
        Return the owner of path.

        Never raises; falls back to default_user.
        """
        ...

    def close(self) -> None:
        """Release any helper resources."""
        ...


class NullOwnerResolver:
    """For platforms without ownership worth querying."""

    def __init__(self, default_user: str):
        self.default_user = default_user

    def resolve(self, path: str) -> str:
        return self.default_user

    def close(self) -> None:
        pass


class StatOwnerResolver:
    """Owner from the file's uid (POSIX only)."""

    def __init__(self, default_user: str):
        self.default_user = default_user

    def resolve(self, path: str) -> str:
        import pwd

        try:
            return pwd.getpwuid(os.stat(path).st_uid).pw_name
        except (OSError, KeyError):
            return self.default_user

    def close(self) -> None:
        pass


def parse_owner_reply(line: str, default_user: str) -> str:
    """Map one helper reply to a user name (``DOMAIN\\user`` -> ``user``)."""
    line = line.strip()
    if line in _FAILURE_REPLIES:
        return default_user
    return line.split("\\")[-1] or default_user


class SubprocessOwnerResolver:
    """
    Owner lookups through one persistent helper process.

    Requests are written one path per line; replies arrive in the same
    order and are matched against a FIFO of pending futures by a reader
    thread. A request waits at most ``timeout`` seconds. A timed-out helper
    is killed; whenever the helper exits, every pending request resolves
    to the default identity and the helper is restarted after
    ``restart_delay`` seconds. If the helper cannot be spawned at all, the
    resolver is bypassed and answers with the default identity.
    """

    def __init__(
        self,
        default_user: str,
        command: Sequence[str] = POWERSHELL_OWNER_COMMAND,
        *,
        timeout: float = 5.0,
        restart_delay: float = 1.0,
    ):
        self.default_user = default_user
        self.command = list(command)
        self.timeout = timeout
        self.restart_delay = restart_delay

        self._lock = threading.Lock()  # guards _pending and _process
        self._write_lock = threading.Lock()  # keeps enqueue order == write order
        self._pending: deque[Future[str]] = deque()
        self._process: subprocess.Popen[str] | None = None
        self._closed = False
        self._unavailable = False
        self._restart_timer: threading.Timer | None = None

        self._start()

    @property
    def available(self) -> bool:
        return not self._unavailable and not self._closed

    def _start(self) -> None:
        with self._lock:
            if self._closed:
                return
            try:
                process = subprocess.Popen(
                    self.command,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    bufsize=1,
                )
            except OSError as exc:
                self._unavailable = True
                logger.error("Owner lookup helper could not be started ({}); using default identity", exc)
                return
            self._process = process

        threading.Thread(
            target=self._read_replies, args=(process,), name="owner-resolver-stdout", daemon=True
        ).start()
        threading.Thread(
            target=self._read_errors, args=(process,), name="owner-resolver-stderr", daemon=True
        ).start()
        logger.debug("Owner lookup helper started (pid {})", process.pid)

    def _read_replies(self, process: subprocess.Popen[str]) -> None:
        assert process.stdout is not None
        for line in process.stdout:
            with self._lock:
                future = self._pending.popleft() if self._pending else None
            if future is not None and not future.done():
                future.set_result(parse_owner_reply(line, self.default_user))

        code = process.wait()
        self._drain_pending()
        with self._lock:
            if self._process is process:
                self._process = None
            if self._closed:
                return
            logger.warning("Owner lookup helper exited with code {}; restarting", code)
            self._restart_timer = threading.Timer(self.restart_delay, self._start)
            self._restart_timer.daemon = True
            self._restart_timer.start()

    def _read_errors(self, process: subprocess.Popen[str]) -> None:
        assert process.stderr is not None
        for line in process.stderr:
            line = line.rstrip()
            if line:
                logger.warning("Owner lookup helper stderr: {}", line)

    def _drain_pending(self) -> None:
        with self._lock:
            pending = list(self._pending)
            self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_result(self.default_user)

    def resolve(self, path: str) -> str:
        future: Future[str] = Future()
        with self._write_lock:
            with self._lock:
                process = self._process
                if self._closed or process is None or process.poll() is not None:
                    return self.default_user
                self._pending.append(future)
            try:
                assert process.stdin is not None
                process.stdin.write(path + "\n")
                process.stdin.flush()
            except (OSError, ValueError) as exc:
                logger.debug("Owner lookup request failed for {}: {}", path, exc)
                with self._lock:
                    if future in self._pending:
                        self._pending.remove(future)
                return self.default_user

        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            logger.warning("Owner lookup timed out for {}; recycling helper", path)
            process.kill()
            return self.default_user

    def close(self) -> None:
        with self._lock:
            self._closed = True
            process = self._process
            self._process = None
            if self._restart_timer is not None:
                self._restart_timer.cancel()
        if process is not None:
            if process.stdin is not None:
                try:
                    process.stdin.close()
                except OSError as exc:
                    logger.debug("Owner lookup helper stdin already closed: {}", exc)
            process.kill()
        self._drain_pending()


def default_owner_resolver(default_user: str, *, timeout: float = 5.0) -> OwnerResolver:
    """Pick the resolver for the current platform."""
    if sys.platform == "win32":
        return SubprocessOwnerResolver(default_user, timeout=timeout)
    if os.name == "posix":
        return StatOwnerResolver(default_user)
    return NullOwnerResolver(default_user)


def resolve_author(
    resolver: OwnerResolver,
    path: str,
    kind: ChangeType,
    previous: ChangeEvent | None,
) -> str:
    """
    Author of a change.

    Deleted files are not queried; the author of the previous event for the
    path is carried over instead.
    """
    if kind is ChangeType.DELETED:
        return previous.user if previous is not None else resolver.default_user
    return resolver.resolve(path)
