"""Thin wrapper around the ipmitool command-line client."""

import logging
import subprocess

log = logging.getLogger(__name__)

IPMITOOL = "ipmitool"


class IpmiError(OSError):
    """ipmitool could not be run or returned an error."""


class IpmiTool:
    """Runs ipmitool against the local BMC or a remote one over lanplus."""

    def __init__(
        self,
        host: str = "local",
        username: str = "root",
        password: str = "",
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._username = username
        self._password = password
        self._timeout = timeout

    @property
    def host(self) -> str:
        return self._host

    def _base_command(self) -> list[str]:
        if self._host == "local":
            return [IPMITOOL]
        return [
            IPMITOOL,
            "-I", "lanplus",
            "-H", self._host,
            "-U", self._username,
            "-P", self._password,
        ]

    def run(self, *args: str) -> str:
        """Run one ipmitool command and return its stdout.

        Raises IpmiError on a missing binary, timeout or non-zero exit.
        """
        log.debug("ipmitool (%s): %s", self._host, " ".join(args))
        try:
            result = subprocess.run(
                [*self._base_command(), *args],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=True,
            )
        except FileNotFoundError as e:
            raise IpmiError(f"{IPMITOOL} not found: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise IpmiError(f"{IPMITOOL} timed out after {self._timeout:.0f}s") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise IpmiError(f"{IPMITOOL} exited with {e.returncode}: {stderr}") from e
        except UnicodeDecodeError as e:
            raise IpmiError(f"{IPMITOOL} printed undecodable output: {e}") from e
        return result.stdout

    def raw(self, command: list[str]) -> str:
        return self.run("raw", *command)

    def sdr_temperatures(self) -> str:
        return self.run("sdr", "type", "temperature")
