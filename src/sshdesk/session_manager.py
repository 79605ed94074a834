"""Connection lifecycle shared by the shell and SFTP session controllers."""

import threading
from typing import Any, Callable, Dict, FrozenSet, List, Optional

import paramiko

from .broadcaster import EventBroadcaster
from .config import Config
from .exceptions import (
    ConnectionTimeoutError,
    ServerNotFoundError,
    SessionNotFoundError,
    SSHDeskError,
    TransportError,
)
from .logger import Logger
from .server_store import ServerStore
from .session_registry import (
    Closed,
    Connecting,
    ConnectionRegistry,
    Failed,
    Phase,
    SessionState,
    Settlement,
    ShellConnected,
    TransferReady,
    new_session_id,
)
from .ssh_client import Credentials, SSHTransport, resolve_credentials

TransportFactory = Callable[[Config], Any]


def connection_fault(transport: Any) -> Optional[TransportError]:
    """Why a dropped transport went down, or None when it was closed cleanly."""
    fault = transport.fault()
    if fault is None:
        return None
    return TransportError(f"Connection lost: {str(fault) or fault.__class__.__name__}")


class SessionController:
    """Opens, tracks and closes sessions of one kind.

    Subclasses set ``kind`` and ``live_statuses`` and implement
    :meth:`_establish` (open the channel on a connected transport),
    :meth:`_on_ready` (what ``open_session`` returns for a new session) and
    :meth:`_reuse` (what it returns for a deduplicated one).
    """

    kind: str = ""
    live_statuses: FrozenSet[str] = frozenset()

    def __init__(
        self,
        config: Config,
        servers: ServerStore,
        registry: ConnectionRegistry,
        broadcaster: EventBroadcaster,
        transport_factory: TransportFactory = SSHTransport,
    ):
        self.config = config
        self.servers = servers
        self.registry = registry
        self.broadcaster = broadcaster
        self.transport_factory = transport_factory
        self.logger = Logger.get_logger(self.__class__.__module__)

    # -- hooks ----------------------------------------------------------

    def _establish(self, session_id: str, transport: Any, options: Dict[str, Any]) -> Phase:
        raise NotImplementedError

    def _on_ready(self, state: SessionState) -> Any:
        raise NotImplementedError

    def _reuse(self, state: SessionState) -> Any:
        raise NotImplementedError

    # -- lookup ---------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[SessionState]:
        state = self.registry.get(session_id)
        if state is None or state.kind != self.kind:
            return None
        return state

    def _require(self, session_id: str) -> SessionState:
        state = self.get_session(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        return state

    def list_sessions(self) -> List[SessionState]:
        return self.registry.all(self.kind)

    def _resolve_credentials(self, server_id: str) -> Credentials:
        server = self.servers.get_server(server_id)
        if server is None:
            raise ServerNotFoundError(server_id)
        return resolve_credentials(server)

    # -- open -----------------------------------------------------------

    def _is_alive(self, state: SessionState) -> bool:
        if isinstance(state.phase, Connecting) or state.transport is None:
            return True
        return state.transport.is_active()

    def _find_live(self, server_id: str) -> Optional[SessionState]:
        """The session to reuse for ``server_id``; one whose connection dropped is ended first."""
        existing = self.registry.find_active_for(server_id, self.kind, self.live_statuses)
        if existing is not None and not self._is_alive(existing):
            self.logger.warning(f"Session {existing.id} lost its connection, opening a new one")
            self._terminate(existing.id, connection_fault(existing.transport))
            existing = self.registry.find_active_for(server_id, self.kind, self.live_statuses)
        return existing

    def _open(self, server_id: str, **options) -> Any:
        existing = self._find_live(server_id)
        if existing is not None:
            self.logger.info(f"Reusing {existing.status} session {existing.id} for server {server_id}")
            return self._reuse(existing)

        credentials = self._resolve_credentials(server_id)
        transport = self.transport_factory(self.config)
        state = SessionState(new_session_id(self.kind), server_id, self.kind, Connecting(transport))

        existing = self.registry.put_unless_active(state, self.live_statuses)
        if existing is not None:
            # lost a race with a concurrent open for the same server
            transport.close()
            self.logger.info(f"Reusing {existing.status} session {existing.id} for server {server_id}")
            return self._reuse(existing)

        self.logger.info(f"Session {state.id} connecting to {credentials!r}")
        self.broadcaster.publish_status(state.id, state.status)

        settlement = Settlement()
        worker = threading.Thread(
            target=self._connect_worker,
            args=(state.id, transport, credentials, settlement, options),
            name=f"connect-{state.id}",
            daemon=True,
        )
        worker.start()

        timeout = self.config.connection_timeout
        if not settlement.wait(timeout):
            if settlement.claim("timeout"):
                error = ConnectionTimeoutError(f"Connection timeout after {timeout} seconds")
                self._fail(state.id, transport, error)
                raise error
            # the worker got there first; its outcome is moments away
            settlement.wait()

        if settlement.error is not None:
            raise settlement.error
        return settlement.result

    def _connect_worker(
        self,
        session_id: str,
        transport: Any,
        credentials: Credentials,
        settlement: Settlement,
        options: Dict[str, Any],
    ) -> None:
        try:
            transport.connect(credentials)
            phase = self._establish(session_id, transport, options)
        except SSHDeskError as e:
            self._settle_failure(session_id, transport, settlement, e)
            return
        except (paramiko.SSHException, OSError, EOFError) as e:
            # EOFError: server hung up mid-handshake
            self._settle_failure(session_id, transport, settlement, TransportError(str(e) or "Connection closed by server"))
            return
        except Exception as e:
            self.logger.exception(f"Unexpected error while connecting session {session_id}")
            self._settle_failure(session_id, transport, settlement, TransportError(f"Unexpected error: {e}"))
            return

        if not settlement.claim("worker"):
            # timed out while we were connecting
            transport.close()
            return

        state = self.registry.advance(session_id, phase)
        if state is None:
            transport.close()
            settlement.finish(error=TransportError(f"Session {session_id} was closed while connecting"))
            return

        self.logger.info(f"Session {session_id} is {state.status}")
        self.broadcaster.publish_status(session_id, state.status)
        try:
            result = self._on_ready(state)
        except SSHDeskError as e:
            settlement.finish(error=e)
            return
        settlement.finish(result=result)

    def _settle_failure(self, session_id: str, transport: Any, settlement: Settlement, error: SSHDeskError) -> None:
        if not settlement.claim("worker"):
            transport.close()
            return
        if not self._fail(session_id, transport, error):
            error = TransportError(f"Session {session_id} was closed while connecting")
        settlement.finish(error=error)

    def _retire(self, session_id: str, phase: Phase) -> Optional[SessionState]:
        """Remove a session and publish its final status as one step.

        Done under the broadcaster's delivery lock so no output for the
        session can be published after its final status.
        """
        with self.broadcaster.delivery_lock:
            state = self.registry.remove(session_id, final=phase)
            if state is not None:
                error_message = phase.error_message if isinstance(phase, Failed) else None
                self.broadcaster.publish_status(session_id, phase.status, error_message)
        return state

    def _fail(self, session_id: str, transport: Any, error: BaseException) -> bool:
        """Move a session to ``error``, drop it and close its transport."""
        phase = Failed(str(error) or error.__class__.__name__)
        state = self._retire(session_id, phase)
        transport.close()
        if state is None:
            return False
        self.logger.error(f"Session {session_id} failed: {phase.error_message}")
        return True

    # -- close ----------------------------------------------------------

    def _release(self, state: SessionState) -> None:
        """Close whatever channel the session holds, then its transport."""
        phase = state.phase
        try:
            if isinstance(phase, ShellConnected):
                phase.channel.close()
            elif isinstance(phase, TransferReady):
                phase.sftp.close()
        except (paramiko.SSHException, OSError) as e:
            self.logger.warning(f"Error closing channel of session {state.id}: {e}")
        if state.transport is not None:
            state.transport.close()

    def _terminate(self, session_id: str, error: Optional[BaseException] = None) -> bool:
        """Remove a session after its transport went away; publish how it ended."""
        phase = Failed(str(error) or error.__class__.__name__) if error is not None else Closed()
        state = self._retire(session_id, phase)
        if state is None:
            return False
        self._release(state)
        if error is not None:
            self.logger.error(f"Session {session_id} failed: {phase.error_message}")
        else:
            self.logger.info(f"Session {session_id} closed by remote side")
        return True

    def close(self, session_id: str) -> None:
        """Close a session. Unknown or already closed ids are ignored."""
        if self.get_session(session_id) is None:
            return
        state = self._retire(session_id, Closed())
        if state is None:
            return
        self._release(state)
        self.logger.info(f"Session {session_id} closed")

    def close_all(self) -> None:
        for state in self.list_sessions():
            self.close(state.id)
