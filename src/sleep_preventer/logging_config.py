"""
Logging setup shared by the daemon and the CLI
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(log_dir: Optional[Path] = None, level: str = "INFO", log_name: str = "daemon.log") -> None:
    """Install rotating file + stream handlers on the root logger"""
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            handlers.insert(0, RotatingFileHandler(
                log_dir / log_name,
                maxBytes=10*1024*1024,  # 10MB
                backupCount=5
            ))
        except OSError as e:
            # Stream-only logging still works without a writable log dir
            logging.getLogger(__name__).warning(f"Cannot open log directory {log_dir}: {e}")

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
