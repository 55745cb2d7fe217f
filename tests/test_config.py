import pytest
from loguru import logger

from reqforge.config import Settings
from reqforge.logging_config import setup_logging


def test_defaults():
    settings = Settings.from_env({})
    assert settings.backend == "redis"
    assert settings.port == 8086
    assert settings.send_timeout == 30
    assert settings.history_limit == 50
    assert settings.history_max == 200


def test_environment_overrides():
    settings = Settings.from_env({
        "REQFORGE_BACKEND": "rpc",
        "REQFORGE_RPC_URL": "http://db:9000/rpc",
        "REDIS_PORT": "6380",
        "REDIS_SSL": "true",
        "REQFORGE_LOG_JSON": "1",
        "REQFORGE_HISTORY_LIMIT": "10",
    })
    assert settings.backend == "rpc"
    assert settings.rpc_url == "http://db:9000/rpc"
    assert settings.redis_port == 6380
    assert settings.redis_ssl is True
    assert settings.log_json is True
    assert settings.history_limit == 10


def test_unknown_backend_is_rejected():
    with pytest.raises(ValueError):
        Settings.from_env({"REQFORGE_BACKEND": "sqlite"})


def test_json_logging_carries_operation(capsys):
    setup_logging(Settings(log_json=True, log_level="DEBUG"))
    logger.bind(operation="save_request", status="ok").info("saved")
    line = capsys.readouterr().err.strip().splitlines()[-1]
    assert '"operation": "save_request"' in line
    assert '"operation_status": "ok"' in line
