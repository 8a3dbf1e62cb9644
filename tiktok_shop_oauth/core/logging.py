from __future__ import annotations

from pathlib import Path

from loguru import logger

from tiktok_shop_oauth.core.paths import logs_dir

_LOG_FILE: Path | None = None


def init_logging(log_dir: Path | None = None, level: str = "INFO") -> Path:
    """Initialize Loguru sinks for console + file logging."""
    resolved_dir = Path(log_dir) if log_dir is not None else logs_dir()
    resolved_dir.mkdir(parents=True, exist_ok=True)
    log_file = resolved_dir / "tiktok_shop_oauth.log"

    logger.remove()
    logger.add(
        sink=lambda msg: print(msg, end=""),
        level=level,
        backtrace=False,
        diagnose=False,
    )
    logger.add(
        log_file,
        level=level,
        mode="a",
        rotation="10 MB",
        retention="10 days",
        compression="zip",
        enqueue=True,
        backtrace=True,
        # diagnose 会在回溯中打印局部变量，可能带出 token
        diagnose=False,
    )
    logger.info("日志系统已初始化，写入路径: {}", log_file)
    global _LOG_FILE
    _LOG_FILE = log_file
    return log_file


def get_log_file() -> Path:
    if _LOG_FILE is not None:
        return _LOG_FILE
    return logs_dir() / "tiktok_shop_oauth.log"


def mask_secret(value: str | None, keep: int = 4) -> str:
    """Return ``abcd...wxyz`` style preview of a secret for log output."""
    if not value:
        return "<empty>"
    if len(value) <= keep * 2:
        return "*" * len(value)
    return f"{value[:keep]}...{value[-keep:]}"


__all__ = ["get_log_file", "init_logging", "mask_secret"]
