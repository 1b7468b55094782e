"""
Per-project mutual exclusion for validation runs.

Key guarantee: at most ONE validation run per project id at a time within a
process. try_acquire never waits; a second caller is told "already running"
and may retry by hand.

InMemoryProjectLock is process-local. A restart drops every lock and two
instances behind a load balancer do not see each other's locks. Multi-instance
deployments should plug a lease-based ProjectLock implementation into the
orchestrator instead.
"""

import logging
import threading
from typing import Set

logger = logging.getLogger("leadsync.project_lock")


class ProjectLock:
    """Key-scoped, non-blocking lock interface."""

    def try_acquire(self, project_id: str) -> bool:
        raise NotImplementedError

    def release(self, project_id: str):
        raise NotImplementedError

    def is_locked(self, project_id: str) -> bool:
        raise NotImplementedError


class InMemoryProjectLock(ProjectLock):

    def __init__(self):
        self._held: Set[str] = set()
        self._mutex = threading.Lock()

    def try_acquire(self, project_id: str) -> bool:
        with self._mutex:
            if project_id in self._held:
                logger.info(f"Validation lock busy for project {project_id}")
                return False
            self._held.add(project_id)
        logger.debug(f"Validation lock acquired for project {project_id}")
        return True

    def release(self, project_id: str):
        with self._mutex:
            self._held.discard(project_id)
        logger.debug(f"Validation lock released for project {project_id}")

    def is_locked(self, project_id: str) -> bool:
        with self._mutex:
            return project_id in self._held


# Shared by every request handled by this process
validation_locks = InMemoryProjectLock()
