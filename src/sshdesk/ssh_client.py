"""SSH transport built on Paramiko: credentials, connect, shell and SFTP channels."""

import os
import socket
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import paramiko

from .config import Config
from .exceptions import AuthConfigError, ConnectionTimeoutError, TransportError
from .logger import Logger
from .models import ServerRecord

_known_hosts_lock = threading.Lock()


@dataclass(frozen=True)
class Credentials:
    """Everything needed to authenticate against one server."""

    host: str
    port: int
    username: str
    password: Optional[str] = None
    key_filename: Optional[str] = None
    passphrase: Optional[str] = None

    def __repr__(self) -> str:
        auth = "key" if self.key_filename else "password"
        return f"Credentials({self.username}@{self.host}:{self.port}, {auth})"


def resolve_credentials(server: ServerRecord) -> Credentials:
    """Check the server's auth mode has what it needs and build credentials."""
    if server.auth_type == "password":
        if not server.password:
            raise AuthConfigError("Password is required", field="password")
        return Credentials(server.host, server.port, server.username, password=server.password)

    if not server.private_key_path:
        raise AuthConfigError("Private key path is required", field="privateKeyPath")

    key_path = Path(server.private_key_path).expanduser().resolve()
    if not key_path.is_file():
        raise AuthConfigError(f"Private key file not found: {key_path}", field="privateKeyPath")
    if not os.access(key_path, os.R_OK):
        raise AuthConfigError(f"Private key file is not readable: {key_path}", field="privateKeyPath")

    return Credentials(
        server.host,
        server.port,
        server.username,
        key_filename=str(key_path),
        passphrase=server.passphrase or None,
    )


class TrustOnFirstUsePolicy(paramiko.MissingHostKeyPolicy):
    """Accept unknown host keys and record them in the known hosts file."""

    def __init__(self, known_hosts_file: Path):
        self.known_hosts_file = known_hosts_file
        self.logger = Logger.get_logger(__name__)

    def missing_host_key(self, client, hostname, key):
        client.get_host_keys().add(hostname, key.get_name(), key)
        with _known_hosts_lock:
            try:
                host_keys = paramiko.HostKeys()
                if self.known_hosts_file.exists():
                    host_keys.load(str(self.known_hosts_file))
                host_keys.add(hostname, key.get_name(), key)
                self.known_hosts_file.parent.mkdir(parents=True, exist_ok=True)
                host_keys.save(str(self.known_hosts_file))
                self.known_hosts_file.chmod(0o600)
            except OSError as e:
                self.logger.warning(f"Could not record host key for {hostname}: {e}")
        self.logger.info(f"Trusted new {key.get_name()} host key for {hostname}")


class SSHTransport:
    """One authenticated SSH connection. Blocking; run it off the caller's thread."""

    def __init__(self, config: Config):
        self.config = config
        self.logger = Logger.get_logger(__name__)
        self.client = paramiko.SSHClient()
        self._load_known_hosts()
        self.client.set_missing_host_key_policy(TrustOnFirstUsePolicy(config.known_hosts_file))

    def _load_known_hosts(self):
        known_hosts_file = self.config.known_hosts_file
        try:
            if known_hosts_file.exists():
                self.client.load_host_keys(str(known_hosts_file))
        except (OSError, paramiko.SSHException) as e:
            self.logger.warning(f"Error loading known hosts: {e}")

    def connect(self, credentials: Credentials) -> None:
        """Open and authenticate the connection within ``config.connection_timeout``."""
        timeout = self.config.connection_timeout
        connect_kwargs = {
            'hostname': credentials.host,
            'port': credentials.port,
            'username': credentials.username,
            'timeout': timeout,
            'banner_timeout': timeout,
            'auth_timeout': timeout,
            'allow_agent': False,
            'look_for_keys': False,
        }
        if credentials.key_filename:
            connect_kwargs['key_filename'] = credentials.key_filename
            if credentials.passphrase:
                connect_kwargs['passphrase'] = credentials.passphrase
        else:
            connect_kwargs['password'] = credentials.password

        self.logger.info(f"Connecting to SSH server at {credentials.host}:{credentials.port}")
        try:
            self.client.connect(**connect_kwargs)
        except paramiko.AuthenticationException as e:
            raise TransportError(f"Authentication failed: {e}") from e
        except paramiko.BadHostKeyException as e:
            raise TransportError(f"Host key for {credentials.host} has changed: {e}") from e
        except socket.timeout as e:
            raise ConnectionTimeoutError(f"Connection to {credentials.host}:{credentials.port} timed out") from e
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Connection to {credentials.host}:{credentials.port} failed: {e}") from e

        transport = self.client.get_transport()
        if transport:
            transport.set_keepalive(self.config.keepalive_interval)
        self.logger.info(f"Connected to {credentials.host}:{credentials.port}")

    def open_shell(self, cols: int, rows: int) -> paramiko.Channel:
        """Request an interactive PTY shell on the connection."""
        try:
            channel = self.client.invoke_shell(term=self.config.terminal_type, width=cols, height=rows)
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Failed to create shell: {e}") from e
        return channel

    def open_sftp(self) -> paramiko.SFTPClient:
        """Negotiate the SFTP subsystem; returns once the channel is usable."""
        try:
            return self.client.open_sftp()
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Failed to open SFTP channel: {e}") from e

    def is_active(self) -> bool:
        transport = self.client.get_transport()
        return transport is not None and transport.is_active()

    def fault(self) -> Optional[BaseException]:
        """The error that brought the connection down, if there was one."""
        transport = self.client.get_transport()
        if transport is None:
            return None
        return transport.get_exception()

    def close(self) -> None:
        try:
            self.client.close()
        except (paramiko.SSHException, OSError) as e:
            self.logger.warning(f"Error closing connection: {e}")
