from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import paramiko

from .commands import sanitize_host
from .models import ConfigurationError

log = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22


class SSHSessionError(RuntimeError):
    pass


@dataclass(frozen=True)
class SSHSettings:
    host: str
    username: str
    port: int = DEFAULT_SSH_PORT
    password: Optional[str] = None
    key_filename: Optional[str] = None
    timeout: float = 10.0


class SSHSession:
    """
    Thin client over paramiko.SSHClient.

    Host keys are accepted on first sight (the tool is a diagnostic, not a
    trust store). Command output is streamed to on_output as it arrives.
    """

    def __init__(
        self,
        settings: SSHSettings,
        on_output: Optional[Callable[[str], None]] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        self.settings = settings
        self._on_output = on_output
        self._client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _key_path(self) -> Optional[str]:
        if not self.settings.key_filename:
            return None
        path = os.path.expanduser(self.settings.key_filename)
        if not os.path.exists(path):
            log.warning("SSH key not found at %s, falling back to password authentication", path)
            return None
        return path

    def connect(self) -> None:
        s = self.settings
        host = sanitize_host(s.host)
        if not s.username.strip():
            raise ConfigurationError("username must not be empty")
        if not 1 <= s.port <= 65535:
            raise ConfigurationError(f"port out of range 1-65535: {s.port}")

        key = self._key_path()
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=host,
                port=s.port,
                username=s.username.strip(),
                password=s.password,
                key_filename=key,
                timeout=s.timeout,
                look_for_keys=key is None and s.password is None,
                allow_agent=key is None and s.password is None,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise SSHSessionError(f"could not connect to {s.username}@{host}:{s.port}: {e}") from e
        self._client = client
        log.info("connected to %s@%s:%s", s.username, host, s.port)

    def run(self, command: str) -> Tuple[int, str]:
        if self._client is None:
            raise SSHSessionError("not connected")
        try:
            _, stdout, _ = self._client.exec_command(command, get_pty=True, timeout=self.settings.timeout)
        except paramiko.SSHException as e:
            raise SSHSessionError(f"command failed: {e}") from e

        # get_pty merges stderr into stdout
        chunks = []
        for line in iter(stdout.readline, ""):
            chunks.append(line)
            if self._on_output is not None:
                self._on_output(line)
        status = stdout.channel.recv_exit_status()
        return status, "".join(chunks)

    def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.close()
        finally:
            self._client = None

    def __enter__(self) -> "SSHSession":
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
