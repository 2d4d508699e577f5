"""
Unit tests for the fan-out helper.
"""

import asyncio

import pytest

from servelane.core.parallel import run_all, run_first_error


class TestRunFirstError:
    """Test concurrent execution with first-error reporting."""

    @pytest.mark.asyncio
    async def test_all_succeed(self):
        done = []

        async def action(i):
            done.append(i)

        await run_first_error(lambda: action(1), lambda: action(2), lambda: action(3))
        assert sorted(done) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_siblings_complete_before_error_is_raised(self):
        """A fast failure does not cut short a slow sibling."""
        finished = []

        async def fail_fast():
            raise ValueError("boom")

        async def slow():
            await asyncio.sleep(0.05)
            finished.append("slow")

        with pytest.raises(ValueError, match="boom"):
            await run_first_error(fail_fast, slow)

        assert finished == ["slow"]

    @pytest.mark.asyncio
    async def test_first_error_by_launch_order(self):
        """The error of the earliest-launched action wins, not the earliest to fail."""
        async def fail_late():
            await asyncio.sleep(0.05)
            raise KeyError("first launched")

        async def fail_early():
            raise ValueError("second launched")

        with pytest.raises(KeyError):
            await run_first_error(fail_late, fail_early)

    @pytest.mark.asyncio
    async def test_actions_run_concurrently(self):
        started = []
        release = asyncio.Event()

        async def waiter(i):
            started.append(i)
            await release.wait()

        async def releaser():
            await asyncio.sleep(0)
            release.set()

        await asyncio.wait_for(
            run_first_error(lambda: waiter(1), lambda: waiter(2), releaser),
            timeout=1.0,
        )
        assert sorted(started) == [1, 2]

    @pytest.mark.asyncio
    async def test_no_actions(self):
        await run_first_error()


class TestRunAll:
    """Test collection of every action's outcome."""

    @pytest.mark.asyncio
    async def test_errors_in_launch_order(self):
        async def ok():
            return "value"

        async def fail():
            raise RuntimeError("nope")

        errors = await run_all(ok, fail, ok)

        assert errors[0] is None
        assert isinstance(errors[1], RuntimeError)
        assert errors[2] is None
