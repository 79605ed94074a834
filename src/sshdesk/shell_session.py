"""Interactive shell sessions: open, forward bytes both ways, resize, close."""

import codecs
import threading
import time
from typing import Any, Dict, Optional, Union

import paramiko

from .exceptions import SessionNotConnectedError, TransportError
from .session_manager import SessionController, connection_fault
from .session_registry import SHELL, SHELL_LIVE, SessionState, ShellConnected


class ShellSessionController(SessionController):
    """Shell sessions: ``connecting -> connected -> closed``, ``error`` absorbing."""

    kind = SHELL
    live_statuses = SHELL_LIVE

    def open_session(self, server_id: str, cols: Optional[int] = None, rows: Optional[int] = None) -> str:
        """Open (or reuse) the shell session for ``server_id`` and return its id."""
        return self._open(
            server_id,
            cols=cols or self.config.default_cols,
            rows=rows or self.config.default_rows,
        )

    def _establish(self, session_id: str, transport: Any, options: Dict[str, Any]) -> ShellConnected:
        channel = transport.open_shell(options['cols'], options['rows'])
        return ShellConnected(transport, channel)

    def _on_ready(self, state: SessionState) -> str:
        reader = threading.Thread(
            target=self._read_output,
            args=(state.id, state.phase.channel, state.transport),
            name=f"reader-{state.id}",
            daemon=True,
        )
        reader.start()
        return state.id

    def _reuse(self, state: SessionState) -> str:
        return state.id

    def write(self, session_id: str, data: Union[str, bytes]) -> None:
        """Send keystrokes to the remote shell verbatim."""
        state = self._require(session_id)
        if not isinstance(state.phase, ShellConnected):
            raise SessionNotConnectedError(session_id, state.status)

        payload = data.encode('utf-8') if isinstance(data, str) else bytes(data)
        try:
            state.phase.channel.sendall(payload)
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Failed to write to session {session_id}: {e}") from e

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        """Resize the remote PTY. Never raises; ignored unless connected."""
        state = self.get_session(session_id)
        if state is None or not isinstance(state.phase, ShellConnected):
            return

        try:
            state.phase.channel.resize_pty(width=cols, height=rows)
            self.logger.debug(f"Session {session_id} terminal resized to {cols}x{rows}")
        except (paramiko.SSHException, OSError) as e:
            self.logger.debug(f"Resize of session {session_id} ignored: {e}")

    def _emit(self, session_id: str, text: str) -> None:
        if not text:
            return
        # output racing a close is dropped, never delivered after the final status
        with self.broadcaster.delivery_lock:
            if session_id in self.registry:
                self.broadcaster.publish_data(session_id, text)

    def _read_output(self, session_id: str, channel: Any, transport: Any) -> None:
        """Forward stdout and stderr until the channel ends or the session is closed."""
        chunk_size = self.config.read_chunk_size
        stdout = codecs.getincrementaldecoder('utf-8')(errors='replace')
        stderr = codecs.getincrementaldecoder('utf-8')(errors='replace')
        error = None

        try:
            while session_id in self.registry:
                received = False

                if channel.recv_ready():
                    data = channel.recv(chunk_size)
                    if not data:
                        break
                    self._emit(session_id, stdout.decode(data))
                    received = True

                if channel.recv_stderr_ready():
                    data = channel.recv_stderr(chunk_size)
                    if data:
                        self._emit(session_id, stderr.decode(data))
                        received = True

                if not received:
                    if channel.closed or channel.eof_received or channel.exit_status_ready():
                        break
                    time.sleep(self.config.output_poll_interval)
        except (paramiko.SSHException, OSError) as e:
            error = e

        if error is None and not transport.is_active():
            # a dead connection closes its channels without raising
            error = connection_fault(transport)

        self._emit(session_id, stdout.decode(b'', final=True))
        self._emit(session_id, stderr.decode(b'', final=True))

        self._terminate(session_id, error)
