import argparse
import asyncio
import json
import os
import shutil
import sys
import time

import requests
from loguru import logger

from algorithms import WeightConverter
from db import SettingsRepository
from local_store import JsonFileStorage, LocalCacheStore, MAX_WEIGHT_CACHE_VERSION
from scheduler import default_scheduler
import migrate


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)
    logger.info("Backed up {} to {}", db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)
    logger.info("Restored {} from {}", db_path, backup_path)


async def _refresh_when_idle(store: LocalCacheStore, version: int, idle_delay: float) -> dict:
    done: asyncio.Future = asyncio.get_running_loop().create_future()
    store.refresh_max_weight_cache(
        default_scheduler(idle_delay),
        on_done=done.set_result,
        version=version,
        on_error=done.set_exception,
    )
    return await done


def local_max_weights(
    store_path: str,
    refresh: bool = False,
    version: int = MAX_WEIGHT_CACHE_VERSION,
    idle_delay: float = 0.0,
) -> dict:
    """Return max weights from a JSON guest store, rebuilding a stale cache."""
    store = LocalCacheStore(JsonFileStorage(store_path))
    if not refresh:
        cached = store.load_max_weight_cache(version)
        if cached:
            return cached
    return asyncio.run(_refresh_when_idle(store, version, idle_delay))


def local_last_trained(store_path: str) -> dict:
    store = LocalCacheStore(JsonFileStorage(store_path))
    return {k: v.isoformat() for k, v in store.compute_last_trained().items()}


def benchmark(url: str, runs: int = 10) -> None:
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        requests.get(f"{url}/health", timeout=5)
        times.append(time.time() - t0)
    avg = sum(times) / len(times)
    print(f"Average /health response time over {runs} runs: {avg:.4f}s")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="MuscleGrow utility commands")
    parser.add_argument("--db", default=os.environ.get("DB_PATH", "workout.db"))
    parser.add_argument(
        "--yaml", default=os.environ.get("MUSCLEGROW_SETTINGS", "settings.yaml")
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    bkp = sub.add_parser("backup")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")

    sub.add_parser("migrate-db")
    sub.add_parser("vacuum")

    mw = sub.add_parser("max-weights")
    mw.add_argument("--store", default=None)
    mw.add_argument("--refresh", action="store_true")

    lt = sub.add_parser("last-trained")
    lt.add_argument("--store", default=None)

    bench = sub.add_parser("benchmark")
    bench.add_argument("--url", default="http://localhost:8000")
    bench.add_argument("--runs", type=int, default=10)

    conv = sub.add_parser("convert")
    conv.add_argument("--weight", type=float, required=True)
    conv.add_argument("--unit", choices=["kg", "lb"], required=True)

    args = parser.parse_args(argv)
    settings = SettingsRepository(args.db, args.yaml)
    configure_logging(settings.get_text("log_level", "INFO"))
    store_path = getattr(args, "store", None) or settings.get_text(
        "local_store_path", "guest_store.json"
    )

    if args.cmd == "serve":
        import uvicorn

        os.environ["DB_PATH"] = args.db
        os.environ["MUSCLEGROW_SETTINGS"] = args.yaml
        uvicorn.run("rest_api:app", host=args.host, port=args.port)
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "migrate-db":
        migrate.migrate(args.db)
    elif args.cmd == "vacuum":
        settings.vacuum()
    elif args.cmd == "max-weights":
        weights = local_max_weights(
            store_path,
            args.refresh,
            version=settings.get_int("max_weight_cache_version", MAX_WEIGHT_CACHE_VERSION),
            idle_delay=settings.get_int("idle_delay_ms", 0) / 1000,
        )
        print(json.dumps(weights, indent=2, sort_keys=True))
    elif args.cmd == "last-trained":
        print(json.dumps(local_last_trained(store_path), indent=2, sort_keys=True))
    elif args.cmd == "benchmark":
        benchmark(args.url, args.runs)
    elif args.cmd == "convert":
        if args.unit == "kg":
            print(f"{args.weight} kg = {WeightConverter.kg_to_lb(args.weight)} lb")
        else:
            print(f"{args.weight} lb = {WeightConverter.lb_to_kg(args.weight)} kg")


if __name__ == "__main__":
    main()
