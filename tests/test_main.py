"""Tests for the headless entry point."""

import logging

import pytest

from taskmon.__main__ import run_headless


@pytest.mark.asyncio
async def test_headless_once(backend, caplog):
    with caplog.at_level(logging.INFO, logger="taskmon"):
        code = await run_headless(backend.url, 2000, 2, once=True)
    assert code == 0
    assert "tasks: 2/2 shown, 0 new" in caplog.text


@pytest.mark.asyncio
async def test_headless_once_unreachable(caplog):
    with caplog.at_level(logging.INFO, logger="taskmon"):
        code = await run_headless("http://127.0.0.1:1", 2000, 1, once=True)
    assert code == 1
    assert "STALE" in caplog.text
