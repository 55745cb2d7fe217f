import os
from typing import Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    backend: Literal["redis", "rpc"] = "redis"

    # --- RPC backend ---
    rpc_url: str = "http://127.0.0.1:8787/rpc"
    rpc_timeout: float = 30.0

    # --- Redis backend ---
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_ssl: bool = False
    namespace: str = "reqforge"

    # --- Workspace behaviour ---
    send_timeout: int = 30
    history_limit: int = 50
    history_max: int = 200

    # --- MCP server ---
    host: str = "0.0.0.0"
    port: int = 8086

    # --- Logging ---
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            load_dotenv()
            environ = os.environ
        mapping = {
            "backend": "REQFORGE_BACKEND",
            "rpc_url": "REQFORGE_RPC_URL",
            "rpc_timeout": "REQFORGE_RPC_TIMEOUT",
            "redis_host": "REDIS_HOST",
            "redis_port": "REDIS_PORT",
            "redis_password": "REDIS_PASSWORD",
            "redis_ssl": "REDIS_SSL",
            "namespace": "REQFORGE_NAMESPACE",
            "send_timeout": "REQFORGE_SEND_TIMEOUT",
            "history_limit": "REQFORGE_HISTORY_LIMIT",
            "history_max": "REQFORGE_HISTORY_MAX",
            "host": "REQFORGE_HOST",
            "port": "REQFORGE_PORT",
            "log_level": "REQFORGE_LOG_LEVEL",
            "log_json": "REQFORGE_LOG_JSON",
            "log_file": "REQFORGE_LOG_FILE",
        }
        values = {field: environ[var] for field, var in mapping.items() if environ.get(var)}
        return cls.model_validate(values)
