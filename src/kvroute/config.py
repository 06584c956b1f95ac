import os


def getenv_int(key: str, default: int) -> int:
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def getenv_bool(key: str, default: bool) -> bool:
    val = os.environ.get(key)
    if val is None:
        return default
    return val.lower() in ("1", "yes", "true")


# ---- Failover ----
HOLDOFF_S = getenv_int(
    "KVROUTE_HOLDOFF_S", 120
)  # seconds an evicted backend stays out of rotation
MAX_RETRY = getenv_int(
    "KVROUTE_MAX_RETRY", 3
)  # transient failures without success before eviction
BALANCING = getenv_bool("KVROUTE_BALANCING", True)

# ---- Reads ----
PREFIX_PAGE_LIMIT = getenv_int("KVROUTE_PREFIX_PAGE_LIMIT", 100)

# ---- Sharding ----
RING_REPLICAS = getenv_int(
    "KVROUTE_RING_REPLICAS", 64
)  # ring positions per target
