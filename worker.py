#!/usr/bin/env python3
"""
Worker RQ avec logging JSON structuré.
Usage: python worker.py [queue_name ...]

SimpleWorker: les jobs tournent dans le process du worker (pas de fork),
donc le rafraîchissement planifié et le manuel partagent le même
coordinator et son verrou single-flight. Un seul worker doit écouter les
queues du rafraîchissement.
"""
import sys

import redis
from rq import Queue, SimpleWorker

from clearance.core.config import LOG_LEVEL, REDIS_URL
from clearance.core.logging import setup_logging

setup_logging(level=LOG_LEVEL)

DEFAULT_QUEUES = ["high", "default"]


def main():
    queue_names = sys.argv[1:] if len(sys.argv) > 1 else DEFAULT_QUEUES

    redis_conn = redis.from_url(REDIS_URL)
    queues = [Queue(name, connection=redis_conn) for name in queue_names]
    worker = SimpleWorker(queues, connection=redis_conn)
    worker.work(with_scheduler=False)


if __name__ == "__main__":
    main()
