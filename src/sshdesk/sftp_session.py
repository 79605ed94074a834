"""SFTP sessions: remote listing, whole-file transfer and file management."""

import stat
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Tuple

import paramiko

from .exceptions import (
    LocalFileNotFoundError,
    RemoteOperationError,
    SessionNotConnectedError,
    TransportError,
)
from .models import RemoteEntry
from .session_manager import SessionController, connection_fault
from .session_registry import TRANSFER, TRANSFER_LIVE, SessionState, TransferReady

# tried in order when picking the first directory to show
INITIAL_PATH_CANDIDATES = ("~", ".")
ROOT = "/"

SFTPErrors = (IOError, OSError, paramiko.SSHException)


def join_remote(directory: str, name: str) -> str:
    """Join a remote directory and an entry name with exactly one separator at root."""
    if directory == ROOT:
        return f"/{name}"
    return f"{directory}/{name}"


def to_remote_entry(directory: str, item: paramiko.SFTPAttributes) -> RemoteEntry:
    longname = getattr(item, "longname", None)
    if longname:
        is_directory = longname.startswith("d")
    else:
        is_directory = stat.S_ISDIR(item.st_mode or 0)

    return RemoteEntry(
        name=item.filename,
        path=join_remote(directory, item.filename),
        is_directory=is_directory,
        size=item.st_size or 0,
        modified=int(item.st_mtime * 1000) if item.st_mtime is not None else None,
    )


class TransferSessionController(SessionController):
    """SFTP sessions: ``connecting -> ready -> closed``, ``error`` absorbing."""

    kind = TRANSFER
    live_statuses = TRANSFER_LIVE

    def open_session(self, server_id: str) -> Tuple[str, str]:
        """Open (or reuse) the SFTP session for ``server_id``.

        Returns ``(session_id, initial_remote_path)``.
        """
        return self._open(server_id)

    def _establish(self, session_id: str, transport: Any, options: Dict[str, Any]) -> TransferReady:
        return TransferReady(transport, transport.open_sftp())

    def _on_ready(self, state: SessionState) -> Tuple[str, str]:
        watcher = threading.Thread(
            target=self._watch_connection,
            args=(state.id, state.transport),
            name=f"watch-{state.id}",
            daemon=True,
        )
        watcher.start()
        return state.id, self._initial_path(state.id, state.phase.sftp)

    def _watch_connection(self, session_id: str, transport: Any) -> None:
        """End the session as soon as its connection drops."""
        while True:
            time.sleep(self.config.transport_check_interval)
            if session_id not in self.registry:
                return
            if not transport.is_active():
                self._terminate(session_id, connection_fault(transport))
                return

    def _reuse(self, state: SessionState) -> Tuple[str, str]:
        if isinstance(state.phase, TransferReady):
            return state.id, self._initial_path(state.id, state.phase.sftp)
        return state.id, "~"

    def _initial_path(self, session_id: str, sftp: paramiko.SFTPClient) -> str:
        """Home directory, else the current directory, else the root."""
        for candidate in INITIAL_PATH_CANDIDATES:
            try:
                path = sftp.normalize(candidate)
            except SFTPErrors as e:
                self.logger.debug(f"Session {session_id}: cannot resolve {candidate!r}: {e}")
                continue
            if path:
                return path
        return ROOT

    def _sftp(self, session_id: str) -> paramiko.SFTPClient:
        state = self._require(session_id)
        if not isinstance(state.phase, TransferReady):
            raise SessionNotConnectedError(session_id, state.status)

        if not state.transport.is_active():
            self._terminate(session_id, connection_fault(state.transport))
            raise TransportError(f"Connection of session {session_id} was lost")
        return state.phase.sftp

    def list(self, session_id: str, remote_path: str) -> List[RemoteEntry]:
        """List ``remote_path`` in the order the server returns it."""
        sftp = self._sftp(session_id)
        try:
            items = sftp.listdir_attr(remote_path)
        except SFTPErrors as e:
            raise RemoteOperationError(f"Failed to list directory {remote_path}: {e}") from e

        entries = []
        for item in items:
            try:
                entries.append(to_remote_entry(remote_path, item))
            except (TypeError, ValueError, AttributeError) as e:
                self.logger.warning(f"Skipping unreadable entry in {remote_path}: {e}")
        return entries

    def download(self, session_id: str, remote_path: str, local_path: str) -> None:
        sftp = self._sftp(session_id)
        try:
            sftp.get(remote_path, local_path)
        except SFTPErrors as e:
            raise RemoteOperationError(f"Download failed: {e}") from e
        self.logger.info(f"Downloaded {remote_path} to {local_path}")

    def upload(self, session_id: str, local_path: str, remote_path: str) -> None:
        if not Path(local_path).exists():
            raise LocalFileNotFoundError(local_path)

        sftp = self._sftp(session_id)
        try:
            sftp.put(local_path, remote_path)
        except SFTPErrors as e:
            raise RemoteOperationError(f"Upload failed: {e}") from e
        self.logger.info(f"Uploaded {local_path} to {remote_path}")

    def mkdir(self, session_id: str, path: str) -> None:
        sftp = self._sftp(session_id)
        try:
            sftp.mkdir(path)
        except SFTPErrors as e:
            raise RemoteOperationError(f"Failed to create directory: {e}") from e
        self.logger.info(f"Created directory {path}")

    def rename(self, session_id: str, old_path: str, new_path: str) -> None:
        sftp = self._sftp(session_id)
        try:
            sftp.rename(old_path, new_path)
        except SFTPErrors as e:
            raise RemoteOperationError(f"Failed to rename: {e}") from e
        self.logger.info(f"Renamed {old_path} to {new_path}")

    def delete(self, session_id: str, path: str) -> None:
        """Remove a file, or an empty directory. Never recurses."""
        sftp = self._sftp(session_id)
        try:
            attrs = sftp.stat(path)
        except SFTPErrors as e:
            raise RemoteOperationError(f"Failed to check path: {e}") from e

        if stat.S_ISDIR(attrs.st_mode or 0):
            try:
                sftp.rmdir(path)
            except SFTPErrors as e:
                raise RemoteOperationError(f"Failed to delete directory: {e}") from e
            self.logger.info(f"Deleted directory {path}")
        else:
            try:
                sftp.remove(path)
            except SFTPErrors as e:
                raise RemoteOperationError(f"Failed to delete file: {e}") from e
            self.logger.info(f"Deleted file {path}")
