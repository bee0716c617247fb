"""Background workers for asynchronous generation work."""

from adgen.workers.media_generation_worker import MediaGenerationWorker
from adgen.workers.recovery import recover_orphaned_jobs
from adgen.workers.supervisor import TaskSupervisor

__all__ = [
    "MediaGenerationWorker",
    "TaskSupervisor",
    "recover_orphaned_jobs",
]
