import logging

from kvroute.errors import NoBackendAvailableError, UnavailableError
from kvroute.failover import HealthRouter
from kvroute.memory import MemoryBackend


def demo():
    """Fail the first replica until it is evicted, then watch traffic move on."""
    replicas = [MemoryBackend(f"10.0.0.{i}:2379") for i in (1, 2, 3)]
    router = HealthRouter(replicas, holdoff_s=120, max_retry=2, balancing=False)

    replicas[0].inject(UnavailableError("connection refused"), times=2)
    router.put("greeting", "hello")
    print(f"active={router.active()} evicted={router.evicted()}")
    print(f"served by {router.hostname()}: greeting={router.get('greeting')!r}")


def demo_exhaustion():
    """Every replica down: the caller gets NoBackendAvailableError."""
    replicas = [MemoryBackend(f"10.0.1.{i}:2379") for i in (1, 2)]
    router = HealthRouter(replicas, max_retry=1)
    for r in replicas:
        r.inject(UnavailableError)
    try:
        router.get("greeting")
    except NoBackendAvailableError as e:
        print(f"gave up: {e} (last error: {e.__cause__})")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    demo()
    demo_exhaustion()
