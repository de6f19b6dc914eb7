import logging
import os
from logging.handlers import RotatingFileHandler

import uvicorn

from workshop.api.http import create_app

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_dir: str = "logs", level: str = "INFO") -> str:
    """
    Configura o root logger: console + arquivo rotativo (10MB, 5 backups).
    Retorna o caminho do arquivo de log.
    """
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, "workshop.log")
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    handlers = [
        logging.StreamHandler(),
        RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"),
    ]

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    return log_file


log_file = setup_logging(
    log_dir=os.getenv("LOG_DIR", "logs"),
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
)
logging.info(f"Logging configurado: arquivo={log_file}")

app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
    )
