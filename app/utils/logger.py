import logging
import sys
from loguru import logger as loguru_logger
from app.config.settings import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

# Bibliotecas que logam cada requisição HTTP
NOISY_LOGGERS = {
    "twilio.http_client": logging.WARNING,
    "aiohttp.access": logging.WARNING,
    "uvicorn.access": logging.INFO,
}

class InterceptHandler(logging.Handler):
    """Redireciona o logging padrão (usado pelos módulos e pelo uvicorn) para o loguru"""

    def emit(self, record):
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        loguru_logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )

def setup_logger(log_to_file: bool = True):
    loguru_logger.remove()

    loguru_logger.add(
        sys.stdout,
        format=LOG_FORMAT,
        level="DEBUG" if settings.debug else settings.log_level.upper(),
        colorize=True
    )

    if log_to_file:
        loguru_logger.add(
            f"{settings.log_dir}/odia_whatsapp_{{time:YYYY-MM-DD}}.log",
            format=LOG_FORMAT,
            level="INFO",
            rotation="1 day",
            retention="30 days",
            compression="zip"
        )
        # Erros separados: falhas de Redis, Ollama e Twilio
        loguru_logger.add(
            f"{settings.log_dir}/odia_errors_{{time:YYYY-MM-DD}}.log",
            format=LOG_FORMAT,
            level="ERROR",
            rotation="1 week",
            retention="90 days",
            backtrace=True
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    loguru_logger.info(f"Logging initialized ({settings.environment}, level {settings.log_level})")
