"""
Logging estruturado (structlog) da API e dos workers Celery.

Todo evento carrega o nome do serviço; dentro de um job agendado,
job_context() adiciona o nome do job e um id de execução.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

_NOISY_LOGGERS = ("sqlalchemy.engine", "asyncio", "kombu", "redis", "celery.redirected")


def _add_service(service_name: str):
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", service_name)
        return event_dict
    return processor


def setup_logging(log_level: str = "INFO", service_name: str = "intelligence") -> None:
    """
    Configura o structlog e o logging padrão.

    Em DEBUG a saída é legível no console; nos demais níveis, JSON por linha.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if level == logging.DEBUG:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_service(service_name),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Logger do módulo (use __name__)."""
    return structlog.get_logger(name)


@contextmanager
def job_context(job_name: str) -> Iterator[str]:
    """Vincula job e run_id a todos os logs emitidos dentro do bloco."""
    run_id = uuid.uuid4().hex[:12]
    tokens = structlog.contextvars.bind_contextvars(job=job_name, run_id=run_id)
    try:
        yield run_id
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
