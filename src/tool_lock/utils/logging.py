import sys

from loguru import logger

from tool_lock.settings import settings

LOG_FORMAT_CONSOLE = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | "
    "<level>{message}</level>"
)
LOG_FORMAT_FILE = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"
LOG_ROTATION = "10 MB"
LOG_RETENTION = "10 days"
LOG_COMPRESSION = "zip"


def setup_logging(verbose: bool = False, log_to_file: bool = True) -> None:
    """
    Configure loguru sinks for the daemon and the CLI.

    Args:
        verbose (bool): If True, enables DEBUG level logging.
                       Otherwise INFO, unless settings.debug is set.
        log_to_file (bool): The daemon keeps a rotating app.log; short-lived
                       CLI invocations can skip it.
    """
    logger.remove()

    is_debug = verbose or settings.debug
    level = "DEBUG" if is_debug else "INFO"

    logger.add(sys.stderr, level=level, format=LOG_FORMAT_CONSOLE)

    if not log_to_file:
        return

    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file_path = settings.log_dir / "app.log"
    logger.add(
        log_file_path,
        level=level,
        format=LOG_FORMAT_FILE,
        rotation=LOG_ROTATION,
        retention=LOG_RETENTION,
        compression=LOG_COMPRESSION,
        enqueue=True,
    )

    logger.debug(f"Logging initialized. Logs saved to: {log_file_path}")
