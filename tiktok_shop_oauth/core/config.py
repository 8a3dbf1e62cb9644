from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import ClassVar, Optional

from pydantic import BaseModel, Field

from tiktok_shop_oauth.core.paths import config_file, data_dir


class CredentialBackendKind(str, Enum):
    file = "file"
    keyring = "keyring"
    memory = "memory"


def _default_credential_file() -> str:
    return str(data_dir() / "tiktok_tokens.json")


class AppConfig(BaseModel):
    app_key: str = ""
    app_secret: str = ""
    redirect_uri: str = "http://localhost:3000/auth/callback"
    host: str = "127.0.0.1"
    port: int = 3000

    authorize_url: str = "https://services.tiktokshop.com/open/authorize"
    token_url: str = "https://auth.tiktok-shops.com/api/v2/token/get"
    refresh_url: str = "https://auth.tiktok-shops.com/api/v2/token/refresh"
    api_base_url: str = "https://open-api.tiktokglobalshop.com"
    shops_path: str = "/authorization/202309/shops"

    credential_backend: CredentialBackendKind = CredentialBackendKind.file
    credential_file: str = Field(default_factory=_default_credential_file)

    http_timeout_seconds: float = Field(default=15.0, gt=0)
    state_ttl_seconds: int = Field(default=600, gt=0)
    refresh_leeway_seconds: int = Field(default=60, ge=0)


class ConfigManager:
    _instance: ClassVar[Optional["ConfigManager"]] = None

    def __init__(self, config_path: Optional[Path] = None) -> None:
        env_path = os.getenv("TIKTOK_CONFIG")
        if config_path is None and env_path:
            config_path = Path(env_path)
        self._config_path = (config_path or config_file()).expanduser()
        self._config = self._load_config()

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def config_path(self) -> Path:
        return self._config_path

    def reload(self) -> AppConfig:
        self._config = self._load_config()
        return self._config

    def _load_config(self) -> AppConfig:
        data: dict[str, object] = {}
        if self._config_path.exists():
            data = json.loads(self._config_path.read_text(encoding="utf-8"))

        # 环境变量优先于配置文件
        for key, env_name in {
            "app_key": "TIKTOK_APP_KEY",
            "app_secret": "TIKTOK_APP_SECRET",
            "redirect_uri": "TIKTOK_REDIRECT_URI",
            "host": "HOST",
            "port": "PORT",
            "credential_backend": "TIKTOK_CREDENTIAL_BACKEND",
            "credential_file": "TIKTOK_CREDENTIAL_FILE",
            "http_timeout_seconds": "TIKTOK_HTTP_TIMEOUT",
            "api_base_url": "TIKTOK_API_BASE_URL",
        }.items():
            env_value = os.getenv(env_name)
            if env_value:
                data[key] = env_value

        return AppConfig.model_validate(data)

    @classmethod
    def get(cls) -> "ConfigManager":
        if cls._instance is None:
            cls._instance = ConfigManager()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None
