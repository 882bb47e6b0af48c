"""
Test Helper Functions - Running commands against each other

Concurrency tests release several façade calls at the same instant and
then look at who won. Errors the test expects are collected for it to
inspect; anything else is re-raised on the test's own thread so a crash in
a worker never passes silently.
"""

import threading
from collections.abc import Callable
from typing import Any


def race(
    *calls: Callable[[], Any],
    expected: type[BaseException] | tuple[type[BaseException], ...] = Exception,
) -> tuple[list[Any], list[BaseException]]:
    """
    Run each call on its own thread, released together by a barrier

    Args:
        calls: Zero-argument callables, typically lambdas around façade calls
        expected: Exception type(s) the losers are allowed to raise

    Returns:
        (results of the calls that succeeded, expected errors raised)
    """
    barrier = threading.Barrier(len(calls))
    results: list[Any] = []
    errors: list[BaseException] = []
    unexpected: list[BaseException] = []

    def run(call: Callable[[], Any]) -> None:
        barrier.wait()
        try:
            results.append(call())
        except expected as e:
            errors.append(e)
        except BaseException as e:
            unexpected.append(e)

    threads = [threading.Thread(target=run, args=(call,)) for call in calls]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    if unexpected:
        raise unexpected[0]
    return results, errors
