"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from core.config import Settings
from core.database import Database
from core.cache import CacheService
from services.contacts import ContactStore
from services.messaging import MessagingClient
from services.flows import FlowService
from services.execution.queue import create_job_queue
from services.execution.scheduler import ContinuationScheduler
from services.execution.cache import StepResultCache
from services.execution.dlq import create_dlq_handler
from services.execution.dispatcher import NodeDispatcher
from services.execution.executor import FlowExecutor
from services.execution.worker import FlowWorker
from services.execution.recovery import RecoverySweeper
from services.triggers.registry import TriggerRegistry
from services.triggers.firing import TriggerFiring


class Container(containers.DeclarativeContainer):
    """Application dependency injection container.

    Providers are lazy: the job queue picks its backend on first use, so it
    must not be resolved before the cache service has started.
    """

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Database (flows, executions, contacts)
    database = providers.Singleton(
        Database,
        settings=settings
    )

    # Cache service (uses Redis when available, memory otherwise)
    cache = providers.Singleton(
        CacheService,
        settings=settings
    )

    # Collaborators
    contact_store = providers.Singleton(
        ContactStore,
        database=database
    )

    messaging = providers.Singleton(
        MessagingClient,
        settings=settings
    )

    # Queue
    job_queue = providers.Singleton(
        create_job_queue,
        name=settings.provided.flow_queue_name,
        cache=cache
    )

    scheduler = providers.Singleton(
        ContinuationScheduler,
        queue=job_queue,
        attempts=settings.provided.flow_job_attempts,
        backoff_delay_ms=settings.provided.flow_job_backoff_ms
    )

    # Step results and dead letters
    step_cache = providers.Singleton(
        StepResultCache,
        cache=cache,
        ttl=settings.provided.step_result_ttl,
        dlq_name=settings.provided.flow_queue_name
    )

    dlq = providers.Singleton(
        create_dlq_handler,
        cache=step_cache,
        enabled=settings.provided.dlq_enabled
    )

    # Engine
    dispatcher = providers.Singleton(
        NodeDispatcher,
        messaging=messaging,
        contacts=contact_store,
        step_cache=step_cache,
        settings=settings
    )

    executor = providers.Singleton(
        FlowExecutor,
        store=database,
        contacts=contact_store,
        scheduler=scheduler,
        dispatcher=dispatcher
    )

    # Triggers
    trigger_registry = providers.Singleton(
        TriggerRegistry,
        store=database
    )

    trigger_firing = providers.Singleton(
        TriggerFiring,
        registry=trigger_registry,
        executor=executor
    )

    # Services
    flow_service = providers.Singleton(
        FlowService,
        database=database,
        registry=trigger_registry,
        executor=executor
    )

    # Background
    worker = providers.Singleton(
        FlowWorker,
        queue=job_queue,
        executor=executor,
        dlq=dlq,
        store=database,
        concurrency=settings.provided.flow_worker_concurrency
    )

    recovery_sweeper = providers.Singleton(
        RecoverySweeper,
        store=database,
        scheduler=scheduler
    )


# Global container instance
container = Container()
