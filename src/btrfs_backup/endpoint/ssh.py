# pyright: standard

"""btrfs-backup: btrfs_backup/endpoint/ssh.py
Run snapshot store commands on the remote backup host through ssh.
"""

import logging
import os
import shlex
import subprocess
from pathlib import Path, PurePosixPath
from typing import Optional

from .. import __util__
from ..__util__ import PreconditionError, Side
from .common import Endpoint

logger = logging.getLogger(__name__)

# Return codes used when a remote command could not run at all
RC_TIMEOUT = 124
RC_NOT_STARTED = 127


class SSHEndpoint(Endpoint):
    """Snapshot store on the remote host.

    Every operation is one ``ssh <host> <command>`` invocation. When
    ``ssh_user`` is configured, ssh runs as that user through ``sudo -u`` so
    its SSH config and keys are used while the local side runs as root.
    Privileged remote commands are prefixed with ``sudo``.
    """

    side = Side.REMOTE

    def __init__(self, config) -> None:
        super().__init__(PurePosixPath(config.remote.path))
        self.remote = config.remote
        self.hostname = config.remote.host

    def __repr__(self) -> str:
        return f"{self.hostname}:{self.root}"

    def check_config(self) -> None:
        """Validate the SSH client config file used to reach the host."""
        ssh_config = self.remote.ssh_config
        logger.info("Using SSH config for host '%s'", self.hostname)
        if ssh_config is None:
            return

        logger.info("SSH config file: %s", ssh_config)
        ssh_config = Path(ssh_config)
        if not ssh_config.is_file():
            raise PreconditionError(f"SSH config file not found at {ssh_config}")
        if not os.access(ssh_config, os.R_OK):
            raise PreconditionError(f"SSH config file is not readable: {ssh_config}")

        if self._host_declared(ssh_config.read_text(encoding="utf-8", errors="replace")):
            logger.info("Found host '%s' in SSH config", self.hostname)
        else:
            logger.warning("Host '%s' not found in %s", self.hostname, ssh_config)
            logger.warning(
                "Make sure your SSH config has a 'Host %s' entry", self.hostname
            )

    def _host_declared(self, text: str) -> bool:
        for line in text.splitlines():
            words = line.split()
            if len(words) > 1 and words[0].lower() == "host":
                if self.hostname in words[1:]:
                    return True
        return False

    def _ssh_base_cmd(self, verbose=False) -> list[str]:
        cmd = []
        if self.remote.ssh_user:
            cmd += ["sudo", "-u", self.remote.ssh_user]
        cmd.append("ssh")
        if verbose:
            cmd.append("-v")
        if self.remote.ssh_config:
            cmd += ["-F", str(self.remote.ssh_config)]

        opts = [
            f"ConnectTimeout={self.remote.timeout}",
            f"StrictHostKeyChecking={self.remote.strict_host_key_checking}",
            "BatchMode=yes",
            "ServerAliveInterval=5",
            "ServerAliveCountMax=6",
        ]
        for opt in opts:
            cmd.extend(["-o", opt])

        cmd.append(self.hostname)
        return cmd

    def _exec_remote_command(
        self, remote_cmd: str, timeout: Optional[float] = None, verbose=False
    ) -> subprocess.CompletedProcess:
        """Run a shell command on the remote host and return its result.

        Never raises for command failures; a timeout or an ssh binary that
        cannot be started is reported through a non-zero return code.
        """
        cmd = self._ssh_base_cmd(verbose=verbose) + [remote_cmd]
        timeout = self.remote.command_timeout if timeout is None else timeout
        try:
            return __util__.exec_subprocess(cmd, timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.debug("Remote command timed out after %ss: %s", timeout, remote_cmd)
            return subprocess.CompletedProcess(cmd, RC_TIMEOUT, b"", b"timed out")
        except OSError as e:
            logger.debug("Could not start ssh: %s", e)
            return subprocess.CompletedProcess(cmd, RC_NOT_STARTED, b"", str(e).encode())

    def echo(self, message: str) -> bool:
        result = self._exec_remote_command(f"echo {shlex.quote(message)}")
        return result.returncode == 0 and message in __util__.decode_output(
            result.stdout
        )

    def connection_diagnostics(self, lines=20) -> list[str]:
        """Return the first lines of a verbose connection attempt."""
        result = self._exec_remote_command("echo test", verbose=True)
        output = __util__.decode_output(result.stderr)
        return output.splitlines()[:lines]

    def makedirs(self, path, chown=False) -> bool:
        quoted = shlex.quote(str(path))
        remote_cmd = f"sudo mkdir -p {quoted}"
        if chown:
            remote_cmd += f" && sudo chown $USER:$USER {quoted}"
        return self._exec_remote_command(remote_cmd).returncode == 0

    def which(self, command: str) -> bool:
        return self._exec_remote_command(f"which {shlex.quote(command)}").returncode == 0

    def has_passwordless_btrfs(self) -> bool:
        return self._exec_remote_command("sudo -n btrfs --version").returncode == 0

    def filesystem_type(self, path) -> Optional[str]:
        result = self._exec_remote_command(f"stat -f -c %T {shlex.quote(str(path))}")
        if result.returncode != 0:
            return None
        return __util__.decode_output(result.stdout) or None

    def receive_command(self, destination) -> list[str]:
        return self._ssh_base_cmd() + [
            f"sudo btrfs receive {shlex.quote(str(destination))}"
        ]

    def receive(self, destination, stdin):
        """Call 'btrfs receive' remotely, setting the given pipe as its stdin."""
        return __util__.exec_subprocess(
            self.receive_command(destination),
            method="Popen",
            stdin=stdin,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )

    def _listdir(self, location) -> list[str]:
        result = self._exec_remote_command(
            f"find {shlex.quote(str(location))} -mindepth 1 -maxdepth 1 -type d -printf '%f\\n'"
        )
        if result.returncode != 0:
            logger.warning(
                "Could not list %s on %s: %s",
                location,
                self.hostname,
                __util__.decode_output(result.stderr),
            )
            return []
        return [line for line in __util__.decode_output(result.stdout).splitlines() if line]

    def _is_dir(self, location) -> bool:
        return self._exec_remote_command(f"test -d {shlex.quote(str(location))}").returncode == 0

    def _delete_subvolume(self, location) -> None:
        remote_cmd = f"sudo btrfs subvolume delete {shlex.quote(str(location))}"
        result = self._exec_remote_command(remote_cmd)
        if result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode, remote_cmd, result.stdout, result.stderr
            )
