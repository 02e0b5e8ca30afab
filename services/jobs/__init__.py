# NG-HEADER: Nombre de archivo: __init__.py
# NG-HEADER: Ubicación: services/jobs/__init__.py
# NG-HEADER: Descripción: Configura el broker de Dramatiq para los jobs en segundo plano.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import logging

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker

from core.config import settings

logger = logging.getLogger("tarbaca.jobs")


def configure_broker() -> dramatiq.Broker:
    """Redis en despliegue; ``StubBroker`` con RUN_INLINE_JOBS=1 (dev y tests)."""
    if settings.run_inline_jobs:
        # Modo desarrollo: no tocar Redis
        broker: dramatiq.Broker = StubBroker()
    else:
        broker = RedisBroker(url=settings.redis_url)
    dramatiq.set_broker(broker)
    logger.debug("Broker de jobs: %s", type(broker).__name__)
    return broker


broker = configure_broker()
