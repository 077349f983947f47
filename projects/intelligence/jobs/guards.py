"""
Guardas de execução única por tipo de job.

Impedem que o mesmo job rode duas vezes ao mesmo tempo dentro do processo.
Não são um lock distribuído: com mais de um worker, duas instâncias do mesmo
job podem rodar em paralelo.
"""

import threading
from datetime import datetime
from typing import Any, Optional


class SingleFlightGuard:
    """Flag "já em execução" de um job, com o horário da última execução."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self.started_at: Optional[datetime] = None
        self.last_finished_at: Optional[datetime] = None
        self.last_status: Optional[str] = None

    def try_acquire(self) -> bool:
        acquired = self._lock.acquire(blocking=False)
        if acquired:
            self.started_at = datetime.utcnow()
        return acquired

    def release(self, status: str = "completed") -> None:
        self.last_finished_at = datetime.utcnow()
        self.last_status = status
        self.started_at = None
        self._lock.release()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_finished_at": (
                self.last_finished_at.isoformat() if self.last_finished_at else None
            ),
            "last_status": self.last_status,
        }


JOB_NAMES = ("patterns", "rules", "scores", "cleanup")

guards: dict[str, SingleFlightGuard] = {name: SingleFlightGuard(name) for name in JOB_NAMES}


def get_guard(job_name: str) -> SingleFlightGuard:
    return guards[job_name]
