import logging.config
import sys
from typing import Optional

SEPARATOR = "=" * 80

# 원장 감사 로그를 남기는 로거
LEDGER_LOGGERS = (
    "userapi.services.points_ledger",
    "userapi.services.point_service",
)


def build_logging_config(
    log_level: str = "INFO", ledger_log_level: Optional[str] = None
) -> dict:
    """dictConfig 설정 생성

    - 일반 로그: stdout (simple)
    - WARNING 이상: stderr (detailed, 스택 위치 포함)
    - 원장 로거: ledger_log_level로 별도 조정 (운영에서 LOG_LEVEL=WARNING 이어도
      적립/차감 기록은 INFO로 남길 수 있음)
    - httpx / sqlalchemy: 요청마다 찍히는 INFO 로그는 숨김
    """
    log_level = log_level.upper()
    ledger_log_level = (ledger_log_level or log_level).upper()

    loggers = {
        "": {  # root logger
            "handlers": ["console", "error_console"],
            "level": log_level,
            "propagate": True,
        },
        "userapi": {
            "handlers": ["console", "error_console"],
            "level": log_level,
            "propagate": False,
        },
        "httpx": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
        "sqlalchemy.engine": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    }
    for name in LEDGER_LOGGERS:
        loggers[name] = {
            "handlers": ["ledger_console", "error_console"],
            "level": ledger_log_level,
            "propagate": False,
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": f"\n{SEPARATOR}\n%(asctime)s | %(levelname)-8s | %(name)s\n"
                f"%(pathname)s:%(lineno)d\n%(message)s\n{SEPARATOR}",
            },
            "simple": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s",
            },
            "ledger": {
                "format": "%(asctime)s | %(levelname)-8s | LEDGER | %(message)s",
            },
        },
        "handlers": {
            "console": {
                "formatter": "simple",
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
            },
            "ledger_console": {
                "formatter": "ledger",
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
            },
            "error_console": {
                "formatter": "detailed",
                "class": "logging.StreamHandler",
                "stream": sys.stderr,
                "level": "WARNING",
            },
        },
        "loggers": loggers,
    }


def setup_logging(log_level: str = "INFO", ledger_log_level: Optional[str] = None):
    logging.config.dictConfig(build_logging_config(log_level, ledger_log_level))
