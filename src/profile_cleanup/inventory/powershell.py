"""Run PowerShell scripts locally or on a target host over WinRM."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import requests
import winrm
from winrm.exceptions import WinRMError, WinRMOperationTimeoutError, WinRMTransportError

from .base import InvalidHostError, InventoryError

if TYPE_CHECKING:
    from ..config import CleanupConfig

logger = logging.getLogger("profile-cleanup")

_HOST_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.\-]*$")


def validate_host(host: str) -> str:
    """Return a trimmed host name that is safe to embed in a script.

    Raises:
        InvalidHostError: If the name is empty or has unexpected characters.

    """
    host = host.strip()
    if not host:
        raise InvalidHostError("Host name is empty")
    if len(host) > 253 or not _HOST_PATTERN.match(host):
        raise InvalidHostError(f"Invalid host name: {host!r}")
    return host


@dataclass
class PowerShellResult:
    """Captured output of one PowerShell invocation."""

    status_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.status_code == 0

    @property
    def error_detail(self) -> str:
        """Best single-line description of a failure."""
        for text in (self.stderr, self.stdout):
            lines = [line.strip() for line in text.splitlines() if line.strip()]
            if lines:
                return lines[0]
        return f"exit code {self.status_code}"


class PowerShellRunner(Protocol):
    """Executes a script against a host.

    Scripts refer to the CIM target as ``$ComputerName``; each runner
    defines it before the script body.
    """

    def run(self, host: str, script: str) -> PowerShellResult: ...


class LocalPowerShell:
    """Runs powershell.exe on this machine; the script reaches the host through CIM."""

    def __init__(self, executable: str = "powershell.exe", timeout: int = 120) -> None:
        self.executable = executable
        self.timeout = timeout

    def run(self, host: str, script: str) -> PowerShellResult:
        host = validate_host(host)
        command = f"$ComputerName = '{host}'\n{script}"
        logger.debug("Running local PowerShell against %s", host)

        try:
            result = subprocess.run(
                [
                    self.executable,
                    "-NoProfile",
                    "-NonInteractive",
                    "-ExecutionPolicy",
                    "Bypass",
                    "-Command",
                    command,
                ],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise InventoryError(f"PowerShell timed out after {self.timeout}s talking to {host}") from e
        except (subprocess.SubprocessError, OSError) as e:
            raise InventoryError(f"Could not start {self.executable}: {e}") from e

        return PowerShellResult(
            status_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )


class WinRMPowerShell:
    """Runs the script on the target host itself through a WinRM session."""

    def __init__(
        self,
        username: str | None,
        password: str | None,
        *,
        port: int = 5985,
        transport: str = "ntlm",
        use_ssl: bool = False,
        verify_ssl: bool = True,
        timeout: int = 120,
    ) -> None:
        self.username = username
        self.password = password
        self.port = port
        self.transport = transport
        self.use_ssl = use_ssl
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self._sessions: dict[str, winrm.Session] = {}

    def endpoint(self, host: str) -> str:
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{host}:{self.port}/wsman"

    def _session(self, host: str) -> winrm.Session:
        if host not in self._sessions:
            self._sessions[host] = winrm.Session(
                self.endpoint(host),
                auth=(self.username or "", self.password or ""),
                transport=self.transport,
                server_cert_validation="validate" if self.verify_ssl else "ignore",
                operation_timeout_sec=self.timeout,
                read_timeout_sec=self.timeout + 10,
            )
        return self._sessions[host]

    def run(self, host: str, script: str) -> PowerShellResult:
        host = validate_host(host)
        command = f"$ComputerName = 'localhost'\n{script}"
        logger.debug("Running PowerShell on %s via %s", host, self.endpoint(host))

        try:
            response = self._session(host).run_ps(command)
        except WinRMOperationTimeoutError as e:
            raise InventoryError(f"WinRM operation timed out on {host}") from e
        except (WinRMError, WinRMTransportError) as e:
            raise InventoryError(f"WinRM error talking to {host}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise InventoryError(f"Cannot reach {host}: {e}") from e

        return PowerShellResult(
            status_code=response.status_code,
            stdout=response.std_out.decode("utf-8", errors="replace"),
            stderr=response.std_err.decode("utf-8", errors="replace"),
        )


def create_runner(config: CleanupConfig, password: str | None = None) -> PowerShellRunner:
    """Build the runner selected by ``config.transport``."""
    if config.transport == "winrm":
        return WinRMPowerShell(
            config.winrm.username,
            password,
            port=config.winrm.port,
            transport=config.winrm.transport,
            use_ssl=config.winrm.use_ssl,
            verify_ssl=config.winrm.verify_ssl,
            timeout=config.command_timeout,
        )
    return LocalPowerShell(config.powershell_executable, timeout=config.command_timeout)
