import pytest

from cardsearch.errors import BuildCancelled
from cardsearch.utils.batching import BatchRunner


class TestBatchRunner:
    def setup_method(self):
        self.progress = []
        self.yields = 0
        self.batches = []

    def runner(self, **kw):
        def on_yield():
            self.yields += 1

        return BatchRunner(on_progress=lambda f, m: self.progress.append((f, m)), yield_hook=on_yield, **kw)

    def test_batches_in_order(self):
        self.runner(batch_size=2).run(5, lambda i, j: self.batches.append((i, j)), 0.0, 1.0, "Rows")
        assert self.batches == [(0, 2), (2, 4), (4, 5)]
        assert self.yields == 2
        assert [m for _, m in self.progress] == ["Rows 2/5", "Rows 4/5", "Rows 5/5"]
        assert self.progress[-1][0] == pytest.approx(1.0)

    def test_progress_never_goes_back(self):
        runner = self.runner()
        runner.report(0.5, "half")
        runner.report(0.2, "late")
        runner.report(1.7, "over")
        assert [f for f, _ in self.progress] == [0.5, 0.5, 1.0]

    def test_empty_run(self):
        self.runner().run(0, lambda i, j: self.batches.append((i, j)), 0.1, 0.3, "Rows")
        assert self.batches == []
        assert self.progress == [(0.3, "Rows 0/0")]

    def test_cancel_between_batches(self):
        runner = self.runner(batch_size=1, should_cancel=lambda: len(self.batches) >= 2)
        with pytest.raises(BuildCancelled):
            runner.run(5, lambda i, j: self.batches.append((i, j)), 0.0, 1.0, "Rows")
        assert self.batches == [(0, 1), (1, 2)]

    def test_batch_size_floor(self):
        assert BatchRunner(batch_size=0).batch_size == 1
