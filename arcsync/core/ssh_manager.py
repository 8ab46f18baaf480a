"""
SSH connection manager used by the connectivity self-test
"""
import re
import shlex
from dataclasses import dataclass
from typing import Optional
import paramiko
from ..config import Settings
from ..utils.logging import log
from ..utils.retry import retried

# [user@]host:path, as rsync understands it over ssh
_REMOTE_RE = re.compile(r"\A(?:(?P<user>[^@/:]+)@)?(?P<host>[^@/:]+):(?P<path>.*)\Z")


@dataclass(frozen=True)
class RemoteEndpoint:
    host: str
    path: str
    user: Optional[str] = None


def parse_endpoint(endpoint: str) -> Optional[RemoteEndpoint]:
    """Split an rsync-over-ssh endpoint; returns None for a local path."""
    if endpoint.startswith("/") or "::" in endpoint or endpoint.startswith("rsync://"):
        return None
    m = _REMOTE_RE.match(endpoint)
    if not m:
        return None
    return RemoteEndpoint(host=m.group("host"), path=m.group("path") or ".",
                          user=m.group("user"))


class SSHManager:
    """
    Wraps paramiko SSHClient + SFTPClient.
    Automatically reconnects on channel errors.
    """

    def __init__(self, endpoint: RemoteEndpoint, settings: Settings):
        self.endpoint = endpoint
        self.settings = settings
        self._ssh: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None

    # ── connection ─────────────────────────────────────────────────────────

    def connect(self):
        if self._ssh:
            try:
                self._ssh.get_transport().send_ignore()  # test if alive
                return
            except Exception:
                self._close_quietly()

        target = f"{self.endpoint.user + '@' if self.endpoint.user else ''}{self.endpoint.host}"
        log(f"[SSH] connecting to {target}:{self.settings.ssh_port} …")
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kw: dict = dict(hostname=self.endpoint.host, port=self.settings.ssh_port,
                        timeout=20, banner_timeout=30, auth_timeout=30)
        if self.endpoint.user:
            kw["username"] = self.endpoint.user
        if self.settings.ssh_key:
            kw["key_filename"] = self.settings.ssh_key

        client.connect(**kw)
        client.get_transport().set_keepalive(30)

        self._ssh = client
        self._sftp = client.open_sftp()
        log("[SSH] connected ✓")

    def _close_quietly(self):
        for closable in (self._sftp, self._ssh):
            try:
                if closable:
                    closable.close()
            except Exception:
                pass
        self._ssh = None
        self._sftp = None

    def disconnect(self):
        self._close_quietly()
        log("[SSH] disconnected.")

    def ensure_connected(self):
        """Call before any remote operation."""
        try:
            if self._ssh and self._ssh.get_transport().is_active():
                return
        except Exception:
            pass
        self.connect()

    # ── raw exec ────────────────────────────────────────────────────────────

    @retried
    def exec(self, cmd: str, timeout: int = 30) -> tuple[str, str]:
        """Run a command; return (stdout, stderr). Raises on non-zero exit."""
        self.ensure_connected()
        _, stdout, stderr = self._ssh.exec_command(cmd, timeout=timeout)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        if rc != 0:
            raise RuntimeError(f"remote command exited {rc}: {cmd!r}\nstderr: {err.strip()}")
        return out, err

    def make_dirs(self, remote_path: str):
        self.exec(f"mkdir -p -- {shlex.quote(remote_path)}")

    def remove_tree(self, remote_path: str):
        self.exec(f"rm -rf -- {shlex.quote(remote_path)}")

    # ── sftp ops ────────────────────────────────────────────────────────────

    @retried
    def sftp_stat(self, remote: str):
        self.ensure_connected()
        return self._sftp.stat(remote)

    def sftp_exists(self, remote: str) -> bool:
        try:
            self.sftp_stat(remote)
            return True
        except (FileNotFoundError, IOError):
            return False
