"""API layer exposed to the SSHDesk web interface."""

import json
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .broadcaster import EventBroadcaster
from .config import Config
from .exceptions import SessionNotFoundError, SSHDeskError
from . import local_fs
from .logger import Logger
from .server_store import ServerStore
from .session_manager import TransportFactory
from .session_registry import ConnectionRegistry
from .settings_store import SettingsStore
from .sftp_session import TransferSessionController
from .shell_session import ShellSessionController
from .ssh_client import SSHTransport
from .vault import CredentialVault

Payload = Union[str, Mapping[str, Any], None]


def _parse(payload: Payload) -> Dict[str, Any]:
    """Accept a JSON string (what the JS bridge sends) or an already decoded dict."""
    if payload is None:
        return {}
    if isinstance(payload, str):
        data = json.loads(payload) if payload.strip() else {}
    else:
        data = dict(payload)
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data


class WebviewConsumer:
    """Delivers broadcaster events to a webview window as DOM CustomEvents."""

    def __init__(self, window):
        self.window = window

    def __call__(self, channel: str, payload: Dict[str, Any]) -> None:
        script = (
            f"window.dispatchEvent(new CustomEvent({json.dumps(channel)}, "
            f"{{detail: {json.dumps(payload)}}}))"
        )
        self.window.evaluate_js(script)


class SSHDeskAPI:
    """API exposed to JavaScript frontend.

    Owns the process-wide session context. Every method returns a JSON string,
    ``{"success": true, ...}`` or ``{"success": false, "error": ..., "errorType": ...}``.
    """

    def __init__(self, config: Config, transport_factory: TransportFactory = SSHTransport):
        self.config = config
        self.logger = Logger.get_logger(__name__)

        self.vault = CredentialVault(config)
        self.servers = ServerStore(config, self.vault)
        self.settings = SettingsStore(config)
        self.registry = ConnectionRegistry()
        self.broadcaster = EventBroadcaster()
        self.shell = ShellSessionController(
            config, self.servers, self.registry, self.broadcaster, transport_factory
        )
        self.transfer = TransferSessionController(
            config, self.servers, self.registry, self.broadcaster, transport_factory
        )
        self._window_consumers: Dict[int, WebviewConsumer] = {}

        self.logger.info("SSHDesk API initialized")

    def _respond(self, action: str, func: Callable[[], Optional[Dict[str, Any]]]) -> str:
        try:
            result = func() or {}
            return json.dumps({'success': True, **result})
        except SSHDeskError as e:
            self.logger.error(f"API: {action} failed: {e}")
            return json.dumps({'success': False, 'error': str(e), 'errorType': e.__class__.__name__})
        except Exception as e:
            # bad payloads (JSON, validation) and anything unexpected
            self.logger.exception(f"API: {action} failed")
            return json.dumps({'success': False, 'error': str(e), 'errorType': e.__class__.__name__})

    # -- windows --------------------------------------------------------

    def attach_window(self, window) -> None:
        """Start pushing session events into ``window``."""
        consumer = WebviewConsumer(window)
        self._window_consumers[id(window)] = consumer
        self.broadcaster.attach(consumer)

    def detach_window(self, window) -> None:
        consumer = self._window_consumers.pop(id(window), None)
        if consumer is not None:
            self.broadcaster.detach(consumer)

    # -- servers --------------------------------------------------------

    def list_servers(self) -> str:
        return self._respond("list servers", lambda: {
            'servers': [s.model_dump(by_alias=True, exclude_none=True) for s in self.servers.list_servers()]
        })

    def get_server(self, server_id: str) -> str:
        def get():
            server = self.servers.get_server(server_id)
            return {'server': server.model_dump(by_alias=True, exclude_none=True) if server else None}
        return self._respond(f"get server {server_id}", get)

    def create_server(self, data: Payload) -> str:
        return self._respond("create server", lambda: {
            'server': self.servers.create_server(_parse(data)).model_dump(by_alias=True, exclude_none=True)
        })

    def update_server(self, server_id: str, data: Payload) -> str:
        return self._respond(f"update server {server_id}", lambda: {
            'server': self.servers.update_server(server_id, _parse(data)).model_dump(by_alias=True, exclude_none=True)
        })

    def delete_server(self, server_id: str) -> str:
        return self._respond(f"delete server {server_id}", lambda: self.servers.delete_server(server_id))

    # -- settings -------------------------------------------------------

    def get_settings(self) -> str:
        return self._respond("get settings", lambda: {'settings': self.settings.get()})

    def save_settings(self, data: Payload) -> str:
        return self._respond("save settings", lambda: {'settings': self.settings.save(_parse(data))})

    # -- shell ----------------------------------------------------------

    def open_shell(self, server_id: str, cols: Optional[int] = None, rows: Optional[int] = None) -> str:
        return self._respond(f"open shell for {server_id}", lambda: {
            'sessionId': self.shell.open_session(server_id, cols, rows)
        })

    def write_shell(self, session_id: str, data: str) -> str:
        return self._respond(f"write to {session_id}", lambda: self.shell.write(session_id, data))

    def resize_shell(self, session_id: str, cols: int, rows: int) -> str:
        return self._respond(f"resize {session_id}", lambda: self.shell.resize(session_id, int(cols), int(rows)))

    def close_shell(self, session_id: str) -> str:
        return self._respond(f"close {session_id}", lambda: self.shell.close(session_id))

    def get_session_status(self, session_id: str) -> str:
        def status():
            state = self.registry.get(session_id) or self.registry.ended(session_id)
            if state is None:
                raise SessionNotFoundError(session_id)
            return state.to_dict()
        return self._respond(f"status of {session_id}", status)

    # -- transfer -------------------------------------------------------

    def open_transfer(self, server_id: str) -> str:
        def open_session():
            session_id, initial_path = self.transfer.open_session(server_id)
            return {'sessionId': session_id, 'initialRemotePath': initial_path}
        return self._respond(f"open SFTP for {server_id}", open_session)

    def list_remote(self, session_id: str, remote_path: str) -> str:
        return self._respond(f"list {remote_path}", lambda: {
            'entries': [e.model_dump(by_alias=True) for e in self.transfer.list(session_id, remote_path)]
        })

    def download(self, session_id: str, remote_path: str, local_path: str) -> str:
        return self._respond(f"download {remote_path}",
                             lambda: self.transfer.download(session_id, remote_path, local_path))

    def upload(self, session_id: str, local_path: str, remote_path: str) -> str:
        return self._respond(f"upload {local_path}",
                             lambda: self.transfer.upload(session_id, local_path, remote_path))

    def make_remote_directory(self, session_id: str, path: str) -> str:
        return self._respond(f"mkdir {path}", lambda: self.transfer.mkdir(session_id, path))

    def rename_remote(self, session_id: str, old_path: str, new_path: str) -> str:
        return self._respond(f"rename {old_path}", lambda: self.transfer.rename(session_id, old_path, new_path))

    def delete_remote(self, session_id: str, path: str) -> str:
        return self._respond(f"delete {path}", lambda: self.transfer.delete(session_id, path))

    def close_transfer(self, session_id: str) -> str:
        return self._respond(f"close {session_id}", lambda: self.transfer.close(session_id))

    # -- local filesystem -----------------------------------------------

    def local_home_dir(self) -> str:
        return self._respond("home dir", lambda: {'path': local_fs.home_dir()})

    def list_local(self, dir_path: str) -> str:
        return self._respond(f"list local {dir_path}", lambda: {
            'entries': [e.model_dump(by_alias=True) for e in local_fs.list_local(dir_path)]
        })

    def cleanup(self):
        """Close every live session and stop event delivery."""
        self.logger.info("API: Cleaning up resources")
        self.shell.close_all()
        self.transfer.close_all()
        for consumer in list(self._window_consumers.values()):
            self.broadcaster.detach(consumer)
        self._window_consumers.clear()
