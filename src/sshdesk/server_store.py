"""Server record storage with encrypted secrets."""

import json
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from .config import Config
from .exceptions import ConfigurationError, ServerNotFoundError
from .logger import Logger
from .models import ServerInput, ServerRecord, ServerUpdate, utc_now
from .vault import CredentialVault

SECRET_FIELDS = ("password", "passphrase")

# optional fields an explicit null removes; other nulls mean "unchanged"
CLEARABLE_FIELDS = ("notes", "privateKeyPath")

# which secret belongs to which authentication mode
SECRET_FOR_MODE = {"password": "password", "privateKey": "passphrase"}


class ServerStore:
    """CRUD over the servers document. The whole file is rewritten on each change."""

    def __init__(self, config: Config, vault: CredentialVault):
        self.config = config
        self.vault = vault
        self.logger = Logger.get_logger(__name__)

    # -- raw document -------------------------------------------------

    def _read_raw(self) -> List[Dict[str, Any]]:
        """Read stored records with secrets still in envelope form."""
        path = self.config.servers_file
        if not path.exists():
            return []

        try:
            data = json.loads(path.read_text(encoding="utf-8") or "[]")
        except (OSError, ValueError) as e:
            self.logger.error(f"Error reading servers from {path}: {e}")
            return []

        if not isinstance(data, list):
            self.logger.error(f"Servers file {path} does not hold a list, ignoring it")
            return []
        return [item for item in data if isinstance(item, dict)]

    def _write_raw(self, records: List[Dict[str, Any]]) -> None:
        """Write records, encrypting any secret that is not an envelope yet."""
        sealed = []
        for record in records:
            record = dict(record)
            for field in SECRET_FIELDS:
                value = self.vault.seal(record.get(field))
                if value is None:
                    record.pop(field, None)
                else:
                    record[field] = value
            sealed.append(record)

        self.config.ensure_config_dir()
        try:
            self.config.servers_file.write_text(
                json.dumps(sealed, ensure_ascii=False, indent=2), encoding="utf-8"
            )
        except OSError as e:
            self.logger.error(f"Error saving servers: {e}")
            raise ConfigurationError(f"Failed to save servers: {e}") from e

    def _reveal(self, raw: Mapping[str, Any]) -> ServerRecord:
        data = dict(raw)
        for field in SECRET_FIELDS:
            data[field] = self.vault.reveal(data.get(field))
        return ServerRecord.model_validate(data)

    @staticmethod
    def _find_index(records: List[Dict[str, Any]], server_id: str) -> int:
        for index, record in enumerate(records):
            if record.get("id") == server_id:
                return index
        raise ServerNotFoundError(server_id)

    # -- public API ---------------------------------------------------

    def list_servers(self) -> List[ServerRecord]:
        return [self._reveal(raw) for raw in self._read_raw()]

    def get_server(self, server_id: str) -> Optional[ServerRecord]:
        for raw in self._read_raw():
            if raw.get("id") == server_id:
                return self._reveal(raw)
        return None

    def create_server(self, data: Union[ServerInput, Mapping[str, Any]]) -> ServerRecord:
        """Store a new server and return it with plaintext secrets."""
        server_input = data if isinstance(data, ServerInput) else ServerInput.model_validate(data)

        now = utc_now()
        server = ServerRecord(
            **server_input.model_dump(),
            created_at=now,
            updated_at=now,
        )
        # blank secrets are not stored
        for field in SECRET_FIELDS:
            if not getattr(server, field):
                setattr(server, field, None)

        records = self._read_raw()
        records.append(server.to_document())
        self._write_raw(records)

        self.logger.info(f"Server created: {server.id} ({server.username}@{server.host}:{server.port})")
        return server

    def update_server(self, server_id: str, partial: Union[ServerUpdate, Mapping[str, Any]]) -> ServerRecord:
        """Merge ``partial`` over the stored record, keeping untouched secret envelopes."""
        update = partial if isinstance(partial, ServerUpdate) else ServerUpdate.model_validate(partial)
        supplied = update.model_dump(by_alias=True, exclude_unset=True)

        records = self._read_raw()
        index = self._find_index(records, server_id)
        existing = records[index]

        previous_mode = existing.get("authType", "password")
        mode = supplied.get("authType") or previous_mode

        merged = dict(existing)
        for key, value in supplied.items():
            if key in SECRET_FIELDS:
                continue
            if value is not None:
                merged[key] = value
            elif key in CLEARABLE_FIELDS:
                merged.pop(key, None)

        for field in SECRET_FIELDS:
            new_value = supplied.get(field)
            if new_value is not None and new_value.strip():
                merged[field] = new_value
            elif field not in supplied or SECRET_FOR_MODE[mode] == field:
                # omitted or blank: the stored envelope stays as it is
                continue
            else:
                merged.pop(field, None)

        if mode != previous_mode:
            merged.pop(SECRET_FOR_MODE[previous_mode], None)

        merged["authType"] = mode
        merged["id"] = server_id
        merged["updatedAt"] = utc_now()

        # validate before touching the file
        try:
            ServerRecord.model_validate({k: v for k, v in merged.items() if k not in SECRET_FIELDS})
        except ValidationError:
            self.logger.error(f"Rejected invalid update for server {server_id}")
            raise

        records[index] = merged
        self._write_raw(records)
        self.logger.info(f"Server updated: {server_id}")

        return self.get_server(server_id)

    def delete_server(self, server_id: str) -> None:
        records = self._read_raw()
        index = self._find_index(records, server_id)
        del records[index]
        self._write_raw(records)
        self.logger.info(f"Server deleted: {server_id}")
