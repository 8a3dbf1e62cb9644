from __future__ import annotations

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

import keyring
import keyring.errors
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import AppConfig, ConfigManager, CredentialBackendKind
from .errors import CorruptStateError, CredentialStorageError


class ShopGrant(BaseModel):
    shop_id: str
    shop_name: str
    region: str
    cipher: str

    model_config = ConfigDict(frozen=True, extra="ignore")


class Credential(BaseModel):
    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    access_expires_at: int
    refresh_expires_at: int
    shops: tuple[ShopGrant, ...] = ()
    seller_name: Optional[str] = None
    seller_base_region: Optional[str] = None
    granted_scopes: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True, extra="ignore")

    def access_valid_at(self, now: float) -> bool:
        return now < self.access_expires_at

    def refresh_valid_at(self, now: float) -> bool:
        return now < self.refresh_expires_at

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls, payload: object) -> "Credential":
        if not isinstance(payload, dict):
            raise CorruptStateError(
                f"凭证数据应为 JSON 对象，实际为 {type(payload).__name__}"
            )
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise CorruptStateError(f"凭证数据结构损坏：{exc}") from exc


class CredentialBackend:
    """Durable representation of a single credential record."""

    def load(self) -> Optional[str]:
        raise NotImplementedError

    def save(self, raw: str) -> None:
        raise NotImplementedError

    def delete(self) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


class MemoryCredentialBackend(CredentialBackend):
    def __init__(self, raw: Optional[str] = None) -> None:
        self._raw = raw

    def load(self) -> Optional[str]:
        return self._raw

    def save(self, raw: str) -> None:
        self._raw = raw

    def delete(self) -> None:
        self._raw = None


class FileCredentialBackend(CredentialBackend):
    def __init__(self, path: Path | str) -> None:
        self._path = Path(path).expanduser().resolve()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[str]:
        if not self._path.exists():
            return None
        try:
            return self._path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise CorruptStateError(f"无法读取凭证文件 {self._path}: {exc}") from exc

    def save(self, raw: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(raw, encoding="utf-8")
        os.replace(tmp_path, self._path)
        try:
            os.chmod(self._path, 0o600)
        except OSError:
            pass

    def delete(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass

    def describe(self) -> str:
        return str(self._path)


class KeyringCredentialBackend(CredentialBackend):
    """Windows 凭据管理器单条记录限 2560 字节，按块拆分存储 JSON。

    每次写入使用新的 generation 前缀，最后写索引键；索引键写入前失败时
    旧记录保持完整。
    """

    _service = "tiktok-shop-oauth"
    _KEY_INDEX = "credential.chunks"
    _CHUNK_SIZE = 1024

    def __init__(self, service: str | None = None) -> None:
        self._service = service or self._service

    def load(self) -> Optional[str]:
        index_raw = keyring.get_password(self._service, self._KEY_INDEX)
        if index_raw is None:
            return None
        generation, count = self._parse_index(index_raw)
        parts: list[str] = []
        for index in range(count):
            part = keyring.get_password(self._service, self._chunk_key(generation, index))
            if part is None:
                raise CorruptStateError(f"keyring 缺少凭证分块 {index}/{count}")
            parts.append(part)
        return "".join(parts)

    def save(self, raw: str) -> None:
        previous = self._stored_index()
        generation = previous[0] + 1 if previous else 0
        chunks = [
            raw[offset : offset + self._CHUNK_SIZE]
            for offset in range(0, len(raw), self._CHUNK_SIZE)
        ] or [""]
        written: list[str] = []
        try:
            for index, chunk in enumerate(chunks):
                key = self._chunk_key(generation, index)
                keyring.set_password(self._service, key, chunk)
                written.append(key)
            keyring.set_password(self._service, self._KEY_INDEX, f"{generation}:{len(chunks)}")
        except keyring.errors.KeyringError:
            for key in written:
                self._delete_key(key)
            raise
        if previous:
            old_generation, old_count = previous
            for index in range(old_count):
                self._delete_key(self._chunk_key(old_generation, index))

    def delete(self) -> None:
        previous = self._stored_index()
        self._delete_key(self._KEY_INDEX)
        if previous:
            generation, count = previous
            for index in range(count):
                self._delete_key(self._chunk_key(generation, index))

    def describe(self) -> str:
        return f"keyring:{self._service}"

    @staticmethod
    def _parse_index(index_raw: str) -> tuple[int, int]:
        generation, _, count = index_raw.partition(":")
        try:
            return int(generation), int(count)
        except ValueError as exc:
            raise CorruptStateError(f"keyring 索引无效: {index_raw!r}") from exc

    def _stored_index(self) -> Optional[tuple[int, int]]:
        index_raw = keyring.get_password(self._service, self._KEY_INDEX)
        if not index_raw:
            return None
        try:
            return self._parse_index(index_raw)
        except CorruptStateError:
            return None

    def _chunk_key(self, generation: int, index: int) -> str:
        return f"credential.{generation}.{index}"

    def _delete_key(self, key: str) -> None:
        try:
            keyring.delete_password(self._service, key)
        except keyring.errors.PasswordDeleteError:
            pass


class CredentialStore:
    """Holds the single active credential and keeps it in step with its backend.

    Readers get an immutable snapshot; writers replace the whole record under a
    lock, and the in-memory value only changes after the backend write
    succeeded.
    """

    def __init__(
        self,
        backend: CredentialBackend | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend or MemoryCredentialBackend()
        self._clock = clock
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = self._read_backend()

    @property
    def backend(self) -> CredentialBackend:
        return self._backend

    def get(self) -> Optional[Credential]:
        return self._credential

    def put(self, credential: Credential) -> None:
        raw = json.dumps(credential.to_payload(), ensure_ascii=False, indent=2)
        with self._lock:
            try:
                self._backend.save(raw)
            except (OSError, keyring.errors.KeyringError) as exc:
                raise CredentialStorageError(
                    f"凭证写入失败（{self._backend.describe()}）：{exc}"
                ) from exc
            self._credential = credential
        logger.info(
            "凭证已保存: {}，access 过期时间 {}，店铺数 {}",
            self._backend.describe(),
            credential.access_expires_at,
            len(credential.shops),
        )

    def reload(self) -> Optional[Credential]:
        with self._lock:
            self._credential = self._read_backend()
            return self._credential

    def clear(self) -> None:
        with self._lock:
            try:
                self._backend.delete()
            except (OSError, keyring.errors.KeyringError) as exc:
                raise CredentialStorageError(
                    f"凭证删除失败（{self._backend.describe()}）：{exc}"
                ) from exc
            self._credential = None
        logger.info("凭证已清除: {}", self._backend.describe())

    def is_access_valid(self, now: float | None = None) -> bool:
        credential = self._credential
        if credential is None:
            return False
        return credential.access_valid_at(self._clock() if now is None else now)

    def is_refresh_valid(self, now: float | None = None) -> bool:
        credential = self._credential
        if credential is None:
            return False
        return credential.refresh_valid_at(self._clock() if now is None else now)

    def _read_backend(self) -> Optional[Credential]:
        raw = self._backend.load()
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise CorruptStateError(
                f"凭证数据不是合法 JSON（{self._backend.describe()}）"
            ) from exc
        return Credential.from_payload(payload)


def build_credential_backend(config: AppConfig | None = None) -> CredentialBackend:
    config = config or ConfigManager.get().config
    if config.credential_backend is CredentialBackendKind.memory:
        return MemoryCredentialBackend()
    if config.credential_backend is CredentialBackendKind.keyring:
        return KeyringCredentialBackend()
    return FileCredentialBackend(config.credential_file)


__all__ = [
    "Credential",
    "CredentialBackend",
    "CredentialStore",
    "FileCredentialBackend",
    "KeyringCredentialBackend",
    "MemoryCredentialBackend",
    "ShopGrant",
    "build_credential_backend",
]
