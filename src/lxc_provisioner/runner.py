"""Command execution on the Proxmox host, locally or over SSH."""

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

import paramiko

from lxc_provisioner.models import CommandError

logger = logging.getLogger(__name__)

TIMEOUT_RETURNCODE = 124


@dataclass(frozen=True)
class CommandResult:
    """Result of a host command."""

    command: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def diagnostic(self) -> str:
        """Most useful output for an error message."""
        detail = (self.stderr or self.stdout).strip()
        if len(detail) > 2000:
            detail = f"{detail[:1997]}..."
        return detail


def redact(command: Sequence[str]) -> str:
    """Render a command for logging with password arguments masked."""
    parts = list(command)
    for i, part in enumerate(parts[:-1]):
        if part == "--password":
            parts[i + 1] = "********"
    return shlex.join(parts)


class LocalRunner:
    """Runs commands on this machine with subprocess."""

    def __init__(self, timeout: Optional[int] = None) -> None:
        self.timeout = timeout

    def run(self, command: Sequence[str], timeout: Optional[int] = None) -> CommandResult:
        """
        Run a command and capture its output.

        Non-zero exit codes are returned, not raised.

        Raises:
            CommandError: If the executable does not exist
        """
        argv = list(command)
        logger.debug(f"Running: {redact(argv)}")
        try:
            result = subprocess.run(
                argv, capture_output=True, text=True, timeout=timeout or self.timeout
            )
        except FileNotFoundError as e:
            raise CommandError(f"Command not found: {argv[0]}") from e
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out: {redact(argv)}")
            return CommandResult(argv, TIMEOUT_RETURNCODE, "", f"Timed out after {timeout or self.timeout} seconds")

        return CommandResult(argv, result.returncode, result.stdout, result.stderr)

    def close(self) -> None:
        pass

    def __enter__(self) -> "LocalRunner":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SSHRunner:
    """Runs commands on a remote Proxmox host over SSH."""

    def __init__(self, host: str, user: str = "root", key_path: str = "~/.ssh/id_rsa", timeout: Optional[int] = None):
        self.host = host
        self.user = user
        self.key_path = os.path.expanduser(key_path)
        self.timeout = timeout
        self._client: Optional[paramiko.SSHClient] = None

    def _connect(self) -> paramiko.SSHClient:
        if self._client is None:
            ssh = paramiko.SSHClient()
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                ssh.connect(hostname=self.host, username=self.user, key_filename=self.key_path)
            except (paramiko.SSHException, OSError) as e:
                raise CommandError(f"Cannot connect to {self.user}@{self.host}: {e}") from e
            logger.info(f"🔌 Connected to {self.user}@{self.host}")
            self._client = ssh
        return self._client

    def run(self, command: Sequence[str], timeout: Optional[int] = None) -> CommandResult:
        """Run a command on the remote host and capture its output."""
        argv = list(command)
        logger.debug(f"Running on {self.host}: {redact(argv)}")
        ssh = self._connect()

        try:
            stdin, stdout, stderr = ssh.exec_command(shlex.join(argv), timeout=timeout or self.timeout)
            out = stdout.read().decode()
            err = stderr.read().decode()
            returncode = stdout.channel.recv_exit_status()
        except TimeoutError:
            logger.error(f"Command timed out on {self.host}: {redact(argv)}")
            return CommandResult(argv, TIMEOUT_RETURNCODE, "", "Timed out waiting for remote command")
        except paramiko.SSHException as e:
            raise CommandError(f"SSH command failed on {self.host}: {e}") from e

        return CommandResult(argv, returncode, out, err)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "SSHRunner":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def create_runner(host: str = "", user: str = "root", key_path: str = "~/.ssh/id_rsa"):
    """Return an SSHRunner when a host is given, else a LocalRunner."""
    if host:
        return SSHRunner(host, user=user, key_path=key_path)
    return LocalRunner()
