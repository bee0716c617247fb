"""Service wiring shared by the API and the CLI."""

from dataclasses import dataclass
from typing import Callable

import httpx

from adgen.core.config import Settings
from adgen.services.batch_dispatcher import BatchDispatcher
from adgen.services.callback_handler import CallbackHandler
from adgen.services.downloads import DownloadService
from adgen.services.job_store import JobStore
from adgen.services.media_generation.asset_storage import AssetStorage
from adgen.services.media_generation.comet_client import CometClient
from adgen.services.submission import SubmissionService
from adgen.services.workflow.n8n_client import N8nClient
from adgen.workers.media_generation_worker import MediaGenerationWorker
from adgen.workers.supervisor import TaskSupervisor


@dataclass
class Services:
    """Every long-lived service, built once per process."""

    settings: Settings
    job_store: JobStore
    storage: AssetStorage
    provider: CometClient
    workflow: N8nClient
    supervisor: TaskSupervisor
    worker: MediaGenerationWorker
    dispatcher: BatchDispatcher
    callbacks: CallbackHandler
    submissions: SubmissionService
    downloads: DownloadService


def build_services(
    settings: Settings, uow_factory: Callable, http_client: httpx.AsyncClient
) -> Services:
    """Build the service graph around one UoW factory and one HTTP client.

    Args:
        settings: Application settings
        uow_factory: Factory returned by create_uow_factory()
        http_client: Shared AsyncClient owned by the caller

    Returns:
        Services bundle (the caller shuts down the supervisor and client)
    """
    job_store = JobStore(uow_factory, max_retries=settings.job_update_max_retries)
    storage = AssetStorage(settings.media_root, settings.media_url_prefix)
    provider = CometClient(http_client, settings.comet_api_key, settings.comet_api_url)
    workflow = N8nClient(http_client, settings.n8n_webhook_url, settings.n8n_timeout_seconds)
    supervisor = TaskSupervisor()
    worker = MediaGenerationWorker(job_store, provider, storage, settings)

    return Services(
        settings=settings,
        job_store=job_store,
        storage=storage,
        provider=provider,
        workflow=workflow,
        supervisor=supervisor,
        worker=worker,
        dispatcher=BatchDispatcher(job_store, worker, supervisor, settings),
        callbacks=CallbackHandler(job_store, worker, supervisor, settings),
        submissions=SubmissionService(job_store, storage, workflow, worker, supervisor, settings),
        downloads=DownloadService(job_store, storage),
    )
