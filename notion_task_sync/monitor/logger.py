"""
日志配置
"""
import sys
from pathlib import Path
from loguru import logger

from ..config.config import MonitorConfig

# 同步周期内由 SyncService 绑定 "用户/数据库"，周期外为 "-"
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[pair]}</magenta> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[pair]} | "
    "{name}:{function}:{line} - {message}"
)


def setup_logger(config: MonitorConfig) -> None:
    """配置日志：控制台、滚动日志文件和单独的错误日志"""
    logger.remove()
    logger.configure(extra={"pair": "-"})

    logger.add(sys.stdout, level=config.log_level, format=CONSOLE_FORMAT, colorize=True)

    if config.log_file:
        log_file = Path(config.log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_file),
            level=config.log_level,
            format=FILE_FORMAT,
            rotation=config.log_max_size,
            retention=config.log_backup_count,
            compression="zip",
            encoding="utf-8"
        )

        # ERROR 级别单独留存，保留更久
        logger.add(
            str(log_file.with_suffix('.error.log')),
            level="ERROR",
            format=FILE_FORMAT,
            rotation=config.log_max_size,
            retention=config.log_backup_count * 2,
            compression="zip",
            encoding="utf-8"
        )

    logger.info(f"Logger initialized with level: {config.log_level}")
