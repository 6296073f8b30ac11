"""Cooperative cancellation shared by every in-flight generation job."""

import asyncio

from traffic_test_agent.errors import GenerationCancelled


class CancellationToken:
    """A flag observed at every suspension point of a job.

    Waiting on rate-limiter admission, backoff sleeps and backend calls all
    go through :meth:`sleep` or :meth:`run`, so raising the flag aborts them
    immediately instead of letting a scheduled retry complete.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._children: list["CancellationToken"] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()
        for child in self._children:
            child.cancel()

    def child(self) -> "CancellationToken":
        """A token that is cancelled together with this one, but not vice versa."""
        token = CancellationToken()
        self._children.append(token)
        if self.cancelled:
            token.cancel()
        return token

    def discard(self, child: "CancellationToken") -> None:
        """Stop propagating cancellation to ``child``."""
        if child in self._children:
            self._children.remove(child)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise GenerationCancelled("generation cancelled")

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds or until the token fires."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(delay, 0))
        except asyncio.TimeoutError:
            return
        raise GenerationCancelled("generation cancelled")

    async def run(self, awaitable):
        """Await ``awaitable`` unless the token fires first.

        On cancellation the pending call is cancelled and its result discarded.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise GenerationCancelled("generation cancelled")
        call = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            waiter.cancel()
        if call in done:
            return call.result()
        call.cancel()
        await asyncio.gather(call, return_exceptions=True)
        raise GenerationCancelled("generation cancelled")
