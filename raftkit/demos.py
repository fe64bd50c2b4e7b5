"""Small threading demonstrations: locks, queues, futures and shared data."""

from __future__ import annotations

import argparse
import queue as queue_module
import threading
import time
from collections.abc import MutableMapping
from concurrent.futures import Future


def countdown(n: int, lock: threading.Lock | None = None, delay: float = 1.0) -> list[int]:
    """Count down from ``n`` to 1, holding ``lock`` for each step."""
    lock = lock or threading.Lock()
    counted = []
    while n > 0:
        with lock:
            print(f"Down we go! {n}")
            counted.append(n)
            time.sleep(delay)
            n -= 1
    return counted


def countup(stop: int, lock: threading.Lock | None = None, delay: float = 1.0) -> list[int]:
    """Count up from 0 to ``stop - 1``, holding ``lock`` for each step."""
    lock = lock or threading.Lock()
    counted = []
    n = 0
    while n < stop:
        with lock:
            print(f"Up we go! {n}")
            counted.append(n)
            time.sleep(delay)
            n += 1
    return counted


def produce(queue: queue_module.Queue, count: int = 10, delay: float = 1.0) -> None:
    """Put 0 to ``count - 1`` on ``queue``, then ``None`` to mark the end."""
    for i in range(count):
        print(f"producer: {i}")
        queue.put(i)
        time.sleep(delay)
    queue.put(None)


def consume(queue: queue_module.Queue) -> list[int]:
    """Take items from ``queue`` until ``None``; return them in order."""
    items = []
    while (item := queue.get()) is not None:
        print(f"consumer: {item}")
        items.append(item)
    print("consumer: empty")
    return items


def add_later(x: int, y: int, delay: float = 5.0) -> Future:
    """Return a future that receives ``x + y`` from a thread after ``delay``."""
    future: Future = Future()

    def work() -> None:
        time.sleep(delay)
        future.set_result(x + y)

    threading.Thread(target=work, daemon=True).start()
    return future


def process_data(
    data: MutableMapping[str, int], lock: threading.Lock, delay: float = 1.0
) -> list[tuple[str, int]]:
    """Walk ``data`` in key order under ``lock``; return the pairs seen."""
    seen = []
    with lock:
        for key, value in sorted(data.items()):
            print(f"{{{key}}} = {{{value}}}")
            seen.append((key, value))
            time.sleep(delay)
    return seen


def _run_count(delay: float) -> None:
    lock = threading.Lock()
    threads = [
        threading.Thread(target=countup, args=(10, lock, delay)),
        threading.Thread(target=countdown, args=(5, lock, delay)),
    ]
    for thread in threads:
        thread.start()
    print("Starting threads")
    for thread in threads:
        thread.join()
    print("Done")


def _run_queue(delay: float) -> None:
    queue: queue_module.Queue = queue_module.Queue()
    producer = threading.Thread(target=produce, args=(queue, 10, delay))
    consumer = threading.Thread(target=consume, args=(queue,))
    producer.start()
    consumer.start()
    print("start")
    producer.join()
    consumer.join()
    print("end")


def _run_future(delay: float) -> None:
    print(add_later(10, 20, delay * 5).result())


def _run_mutable(delay: float) -> None:
    lock = threading.Lock()
    data = {"a": 1, "b": 2, "c": 3, "d": 4}
    worker = threading.Thread(target=process_data, args=(data, lock, delay))
    worker.start()
    time.sleep(delay)
    with lock:
        data["a"] = 100
    worker.join()
    for key, value in sorted(data.items()):
        print(f"{key} = {value}")


_DEMOS = {
    "count": _run_count,
    "queue": _run_queue,
    "future": _run_future,
    "mutable": _run_mutable,
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Threading demonstrations.")
    parser.add_argument("demo", choices=sorted(_DEMOS))
    parser.add_argument("--delay", type=float, default=1.0, help="Seconds per step")
    args = parser.parse_args(argv)
    _DEMOS[args.demo](args.delay)
    return 0