from kvroute.failover import HealthRouter
from kvroute.memory import MemoryBackend
from kvroute.sharding import ShardRouter


def demo_multi_shard():
    """Two shards, each a replica set; different keys route to different shards."""
    shards = {
        f"shard{n}": HealthRouter(
            [MemoryBackend(f"shard{n}-{i}:2379") for i in range(3)], balancing=False
        )
        for n in (1, 2)
    }
    router = ShardRouter(shards)
    for key in ("job-a", "job-b", "job-c", "job-d"):
        router.put(key, key.upper())
        print(f"key={key} shard-host={router.hostname(key)} value={router.get(key)}")
    print(f"cluster={router.hostname()}")


if __name__ == "__main__":
    demo_multi_shard()
