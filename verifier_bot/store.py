"""Per-guild settings and pending verification requests, mirrored to JSON."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Callable, Final

log: Final = logging.getLogger("email-gateway")

DEFAULT_CONFIG_PATH: Final[str] = "./data/config.json"


class ConfigError(Exception):
    """Raised when the settings file cannot be read or written."""


def _id_or_none(raw) -> int | None:
    if raw in (None, ""):
        return None
    return int(raw)


def _id_to_json(value: int | None) -> str:
    return "" if value is None else str(value)


# Durations are persisted as integer nanoseconds.
def _duration_from_json(raw) -> timedelta:
    return timedelta(microseconds=int(raw or 0) // 1000)


def _duration_to_json(value: timedelta) -> int:
    return value // timedelta(microseconds=1) * 1000


@dataclass(slots=True)
class ServerConfig:
    verification_channel_id: int | None = None
    member_audit_channel_id: int | None = None
    unverified_role_id: int | None = None
    rate_limit_enabled: bool = False
    rate_limit_duration: timedelta = field(default_factory=timedelta)

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        return cls(
            verification_channel_id=_id_or_none(data.get("verification_channel_id")),
            member_audit_channel_id=_id_or_none(data.get("member_audit_channel_id")),
            unverified_role_id=_id_or_none(data.get("unverified_role_id")),
            rate_limit_enabled=bool(data.get("rate_limit_enabled", False)),
            rate_limit_duration=_duration_from_json(data.get("rate_limit_duration")),
        )

    def to_dict(self) -> dict:
        return {
            "verification_channel_id": _id_to_json(self.verification_channel_id),
            "member_audit_channel_id": _id_to_json(self.member_audit_channel_id),
            "unverified_role_id": _id_to_json(self.unverified_role_id),
            "rate_limit_enabled": self.rate_limit_enabled,
            "rate_limit_duration": _duration_to_json(self.rate_limit_duration),
        }


@dataclass(frozen=True, slots=True)
class PendingVerification:
    """A verification request waiting on a moderator decision."""

    user_id: int
    guild_id: int
    email: str
    audit_channel_id: int
    audit_message_id: int
    requested_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> str:
        return pending_key(self.guild_id, self.user_id)

    @classmethod
    def from_dict(cls, data: dict) -> "PendingVerification":
        return cls(
            user_id=int(data["user_id"]),
            guild_id=int(data["guild_id"]),
            email=data["email"],
            audit_channel_id=int(data["audit_channel_id"]),
            audit_message_id=int(data["audit_message_id"]),
            requested_at=datetime.fromisoformat(data["requested_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "user_id": str(self.user_id),
            "guild_id": str(self.guild_id),
            "email": self.email,
            "audit_channel_id": str(self.audit_channel_id),
            "audit_message_id": str(self.audit_message_id),
            "requested_at": self.requested_at.isoformat(),
        }


def pending_key(guild_id: int, user_id: int) -> str:
    return f"{guild_id}:{user_id}"


class ConfigStore:
    """Guild id to :class:`ServerConfig` map backed by a JSON file.

    Every mutation is written back to disk before the call returns. Reads hand
    out copies so callers can never mutate the shared map by accident.
    """

    def __init__(self, path: str | os.PathLike = DEFAULT_CONFIG_PATH) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._servers: dict[int, ServerConfig] = {}
        self._pending: dict[str, PendingVerification] = {}

    def load(self) -> None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            log.info("No config file at %s, starting with empty config", self.path)
            with self._lock:
                self._servers = {}
                self._pending = {}
            return
        except OSError as exc:
            raise ConfigError(f"cannot read {self.path}: {exc}") from exc

        try:
            data = json.loads(raw) if raw.strip() else {}
            servers = {
                int(guild_id): ServerConfig.from_dict(entry)
                for guild_id, entry in (data.get("servers") or {}).items()
            }
            pending = {}
            for entry in (data.get("pending") or {}).values():
                record = PendingVerification.from_dict(entry)
                pending[record.key] = record
        except (
            json.JSONDecodeError,
            AttributeError,
            KeyError,
            TypeError,
            ValueError,
        ) as exc:
            raise ConfigError(f"malformed config file {self.path}: {exc}") from exc

        with self._lock:
            self._servers = servers
            self._pending = pending
        log.info("Loaded config for %d guild(s) from %s", len(servers), self.path)

    def save(self) -> None:
        with self._lock:
            payload = self._snapshot()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise ConfigError(f"cannot write {self.path}: {exc}") from exc

    def _snapshot(self) -> str:
        data = {
            "servers": {
                str(guild_id): entry.to_dict()
                for guild_id, entry in self._servers.items()
            },
            "pending": {key: record.to_dict() for key, record in self._pending.items()},
        }
        return json.dumps(data, indent=2) + "\n"

    def get(self, guild_id: int) -> tuple[ServerConfig, bool]:
        with self._lock:
            entry = self._servers.get(guild_id)
            if entry is None:
                return ServerConfig(), False
            return replace(entry), True

    def upsert(
        self, guild_id: int, mutator: Callable[[ServerConfig], None]
    ) -> ServerConfig:
        """Get-or-create the guild entry, apply ``mutator`` and persist."""
        with self._lock:
            entry = self._servers.setdefault(guild_id, ServerConfig())
            mutator(entry)
            result = replace(entry)
        self.save()
        log.info("Updated config for guild %s", guild_id)
        return result

    def guild_ids(self) -> list[int]:
        with self._lock:
            return list(self._servers)

    # ---------- Pending verification records ----------

    def add_pending(self, record: PendingVerification) -> None:
        with self._lock:
            self._pending[record.key] = record
        self.save()

    def get_pending(self, guild_id: int, user_id: int) -> PendingVerification | None:
        with self._lock:
            return self._pending.get(pending_key(guild_id, user_id))

    def pop_pending(self, guild_id: int, user_id: int) -> PendingVerification | None:
        with self._lock:
            record = self._pending.pop(pending_key(guild_id, user_id), None)
        if record is not None:
            self.save()
        return record

    def pending_for_guild(self, guild_id: int) -> list[PendingVerification]:
        with self._lock:
            records = [r for r in self._pending.values() if r.guild_id == guild_id]
        return sorted(records, key=lambda r: r.requested_at)
