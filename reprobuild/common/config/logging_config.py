import logging
import logging.config
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

from pythonjsonlogger import jsonlogger


RECORD_CONTEXT_FIELDS = ("run_id", "stage", "component", "step")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno

        for field_name in RECORD_CONTEXT_FIELDS:
            if hasattr(record, field_name):
                log_record[field_name] = getattr(record, field_name)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


def get_logging_config(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = True,
    log_dir: Optional[str] = None
) -> Dict[str, Any]:
    handlers_config = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "stream": "ext://sys.stderr",
        }
    }

    if json_format:
        handlers_config["console"]["formatter"] = "json"
    else:
        handlers_config["console"]["formatter"] = "standard"

    if log_file or log_dir:
        if log_dir:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)
            log_file = str(log_path / "reprobuild.log")

        handlers_config["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "filename": log_file,
            "maxBytes": 10485760,
            "backupCount": 5,
            "formatter": "json" if json_format else "standard",
        }

    handler_names = list(handlers_config.keys())

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {
                "()": CustomJsonFormatter,
                "format": "%(timestamp)s %(level)s %(name)s %(message)s",
            },
        },
        "handlers": handlers_config,
        "loggers": {
            "": {
                "handlers": handler_names,
                "level": log_level,
                "propagate": True,
            },
            "reprobuild": {
                "handlers": handler_names,
                "level": log_level,
                "propagate": False,
            },
            "aiohttp": {
                "handlers": handler_names,
                "level": "WARNING",
                "propagate": False,
            },
        },
    }

    return config


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = True,
    log_dir: Optional[str] = None
) -> None:
    config = get_logging_config(
        log_level=log_level,
        log_file=log_file,
        json_format=json_format,
        log_dir=log_dir
    )
    logging.config.dictConfig(config)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    def __init__(
        self,
        logger: logging.Logger,
        extra: Optional[Dict[str, Any]] = None
    ):
        super().__init__(logger, extra or {})

    def process(
        self,
        msg: str,
        kwargs: Dict[str, Any]
    ) -> tuple:
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def get_build_logger(
    run_id: str,
    stage: Optional[str] = None,
    component: Optional[str] = None,
    step: Optional[str] = None,
) -> LoggerAdapter:
    logger = get_logger("reprobuild.build")
    extra = {"run_id": run_id}
    if stage:
        extra["stage"] = stage
    if component:
        extra["component"] = component
    if step:
        extra["step"] = step
    return LoggerAdapter(logger, extra)
