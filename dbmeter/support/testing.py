import asyncio
import functools
import threading


__all__ = ["async_test"]


def async_test(case):
    """
    Run an ``async def`` test method to completion on a fresh event loop.

    The loop runs in its own thread, so the test case works regardless of whether the test
    runner itself already has an event loop running.
    """
    @functools.wraps(case)
    def wrapper(*args, **kwargs):
        result = None
        def run_case():
            nonlocal result
            try:
                asyncio.run(case(*args, **kwargs))
            except BaseException as exn:
                result = exn

        thread = threading.Thread(target=run_case, name=f"async_test:{case.__name__}")
        thread.start()
        thread.join()
        if result is not None:
            raise result
    return wrapper
