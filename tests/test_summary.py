"""Tests for the run summary and concurrent fan-out."""

import asyncio
import io

import pytest
from rich.console import Console

from si_migrator.migration.group import gather_group
from si_migrator.migration.summary import MigrationStatus, Summary


class TestSummary:
    """Test outcome bookkeeping."""

    def test_counts(self):
        """Test that each status is counted."""
        summary = Summary()
        summary.add_successful('org', 'space', 'a', 'ecs-bucket')
        summary.add_skipped('org', 'space', 'b', 'ecs-bucket', 'dry run')
        summary.add_failed('org', 'space', 'c', 'ecs-bucket', ValueError('boom'))

        assert summary.success_count == 1
        assert summary.skipped_count == 1
        assert summary.failure_count == 1

    def test_first_result_wins(self):
        """Test that a later result for the same instance is ignored."""
        summary = Summary()
        summary.add_failed('org', 'space', 'a', 'svc', 'boom')
        summary.add_successful('org', 'space', 'a', 'svc')

        (result,) = summary.results()
        assert result.status == MigrationStatus.FAILED
        assert result.message == 'boom'

    def test_unnamed_results_are_dropped(self):
        """Test that skips and failures need an instance name."""
        summary = Summary()
        summary.add_skipped('org', 'space', '', 'svc')
        summary.add_failed('org', 'space', '', 'svc', 'boom')

        assert summary.results() == []

    def test_skip_message(self):
        """Test that the skip reason is part of the message."""
        summary = Summary()
        summary.add_skipped('org', 'space', 'a', 'svc', 'not supported')
        summary.add_skipped('org', 'space', 'b', 'svc')

        messages = [r.message for r in summary.results()]
        assert messages == ['skipped: not supported', 'skipped']

    def test_results_are_sorted(self):
        """Test ordering by org, space and name."""
        summary = Summary()
        summary.add_successful('b', 's', 'x', 'svc')
        summary.add_successful('a', 't', 'y', 'svc')
        summary.add_successful('a', 's', 'z', 'svc')

        assert [(r.org, r.space) for r in summary.results()] == [
            ('a', 's'),
            ('a', 't'),
            ('b', 's'),
        ]

    def test_display(self):
        """Test that the table and the totals line are printed."""
        summary = Summary()
        summary.add_successful('org', 'space', 'bucket', 'ecs-bucket')
        summary.add_failed('org', 'space', 'db', 'SQLServer', 'shared instance')
        output = io.StringIO()

        summary.display(Console(file=output, width=200))

        text = output.getvalue()
        assert 'Migration Results' in text
        assert 'shared instance' in text
        assert 'Migration summary: 1 successes, 0 skipped, 1 errors.' in text


class TestGatherGroup:
    """Test concurrent fan-out."""

    @pytest.mark.asyncio
    async def test_all_complete(self):
        """Test that every coroutine runs."""
        done = []

        async def work(i):
            done.append(i)

        await gather_group(work(i) for i in range(5))

        assert sorted(done) == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_first_error_after_siblings_finish(self):
        """Test that siblings finish before the first error is raised."""
        done = []

        async def fail():
            raise ValueError('first')

        async def slow():
            await asyncio.sleep(0.01)
            done.append('slow')

        with pytest.raises(ValueError, match='first'):
            await gather_group([fail(), slow()])

        assert done == ['slow']

    @pytest.mark.asyncio
    async def test_semaphore_bounds_concurrency(self):
        """Test that no more than the semaphore's value run at once."""
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await gather_group((work() for _ in range(6)), asyncio.Semaphore(2))

        assert peak == 2
