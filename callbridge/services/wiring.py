"""Builds the bus adapter, result store and correlator from configuration."""
import structlog
from ..adapters.base import BusAdapter
from ..adapters.ami import AmiAdapter
from ..adapters.memory import InMemoryAdapter
from ..config import Settings, get_settings
from ..metrics import Metrics
from ..stores.base import ResultStore
from ..stores.memory import InMemoryResultStore
from ..stores.redis_stream import RedisResultStore
from .call_correlator import CallCorrelator

log = structlog.get_logger()


def create_bus_adapter(settings: Settings | None = None) -> BusAdapter:
    """
    Create the bus adapter named by BUS_ADAPTER.

    Returns:
        AmiAdapter for "ami", InMemoryAdapter otherwise
    """
    settings = settings or get_settings()
    if settings.BUS_ADAPTER == "ami":
        log.info("adapter.selected", type="ami", host=settings.AMI_HOST, port=settings.AMI_PORT)
        return AmiAdapter(
            host=settings.AMI_HOST,
            port=settings.AMI_PORT,
            username=settings.AMI_USERNAME,
            secret=settings.AMI_SECRET,
            connect_timeout=settings.AMI_CONNECT_TIMEOUT,
        )
    log.info("adapter.selected", type="memory")
    return InMemoryAdapter()


def create_result_store(settings: Settings | None = None) -> ResultStore:
    """
    Create the result store named by RESULT_STORE.

    Falls back to memory when redis is requested without REDIS_URL.
    """
    settings = settings or get_settings()
    if settings.RESULT_STORE == "redis":
        if not settings.REDIS_URL:
            log.warning(
                "store.fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured"
            )
            return InMemoryResultStore(maxlen=settings.RESULT_STORE_MAXLEN)

        log.info("store.selected", type="redis", url=str(settings.REDIS_URL))
        return RedisResultStore(redis_url=str(settings.REDIS_URL), maxlen=settings.RESULT_STORE_MAXLEN)

    log.info("store.selected", type="memory")
    return InMemoryResultStore(maxlen=settings.RESULT_STORE_MAXLEN)


def create_correlator(metrics: Metrics | None = None, settings: Settings | None = None) -> CallCorrelator:
    settings = settings or get_settings()
    return CallCorrelator(
        bus=create_bus_adapter(settings),
        store=create_result_store(settings),
        metrics=metrics,
        correlate_timeout=settings.CORRELATE_TIMEOUT,
        max_duration=settings.CALL_MAX_DURATION,
    )
