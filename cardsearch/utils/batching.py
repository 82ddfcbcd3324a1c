# utils/batching.py
"""
Cooperative batching
--------------------
Long passes (corpus build, tag augmentation) run in fixed-size batches.
Between batches the runner reports progress, yields, and checks for
cancellation. Batches run strictly in order and progress never goes back.
"""

import time

from cardsearch.errors import BuildCancelled


def default_yield():
    # releases the GIL so a threaded server can serve other requests
    time.sleep(0)


class BatchRunner:
    """Drives `step(start, stop)` over [0, total) in batches."""

    def __init__(self, batch_size=300, on_progress=None, yield_hook=None, should_cancel=None):
        self.batch_size = max(1, int(batch_size))
        self.on_progress = on_progress
        self.yield_hook = yield_hook or default_yield
        self.should_cancel = should_cancel
        self._last_fraction = 0.0

    def report(self, fraction, message):
        fraction = min(1.0, max(self._last_fraction, fraction))
        self._last_fraction = fraction
        if self.on_progress:
            self.on_progress(fraction, message)

    def check_cancel(self):
        if self.should_cancel and self.should_cancel():
            raise BuildCancelled("cancelled at batch boundary")

    def run(self, total, step, start_fraction, end_fraction, label):
        """Run `step` over all batches, mapping progress into [start, end]."""
        span = end_fraction - start_fraction
        if total == 0:
            self.report(end_fraction, f"{label} 0/0")
            return
        i = 0
        while i < total:
            self.check_cancel()
            stop = min(i + self.batch_size, total)
            step(i, stop)
            i = stop
            self.report(start_fraction + span * (i / total), f"{label} {i}/{total}")
            if i < total:
                self.yield_hook()


def run_batched(runner, total, step, start_fraction, end_fraction, label):
    """`runner.run(...)`, or one plain pass over everything when there is no runner."""
    if runner is None:
        step(0, total)
    else:
        runner.run(total, step, start_fraction, end_fraction, label)
