import json
import sys
import traceback

from loguru import logger

from .config import Settings

HUMAN_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[operation]}</cyan> | {message}"
)


def json_sink(message):
    """JSONL sink writing one record per line to stderr."""
    record = message.record
    extra = record["extra"]
    entry = {
        "timestamp": record["time"].strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
        "level": record["level"].name.lower(),
        "component": record["name"],
        "operation": extra.get("operation", "unknown"),
        "operation_status": extra.get("status"),
        "message": record["message"],
        "context": {k: v for k, v in extra.items() if k not in ("operation", "status")},
        "error": None,
    }
    if record["exception"]:
        exc_type, exc_value, exc_tb = record["exception"]
        entry["error"] = {
            "type": exc_type.__name__ if exc_type else "Unknown",
            "message": str(exc_value) if exc_value else "Unknown error",
            "traceback_lines": traceback.format_tb(exc_tb) if exc_tb else [],
        }
    sys.stderr.write(json.dumps(entry, default=str) + "\n")


def setup_logging(settings: Settings):
    logger.remove()
    logger.configure(extra={"operation": "-"})
    if settings.log_json:
        logger.add(json_sink, level=settings.log_level)
    else:
        logger.add(sys.stderr, level=settings.log_level, format=HUMAN_FORMAT)
    if settings.log_file:
        logger.add(
            settings.log_file,
            serialize=True,
            rotation="10 MB",
            retention="7 days",
            level="DEBUG",
        )
    return logger
