import asyncio
import logging
import time

import pytest

from grantflow.common.exceptions import JobTimeoutError
from grantflow.common.job import Job
from grantflow.execution.performer import perform_job
from grantflow.server.registry import HandlerRegistry


def test_register_and_lookup(caplog):
    registry = HandlerRegistry()
    caplog.set_level(logging.INFO)

    def crawl(job):
        return job.payload

    registry.register("crawl_grant_source", crawl, timeout_seconds=30)

    registration = registry.get("crawl_grant_source")
    assert registration.handler is crawl
    assert registration.timeout_seconds == 30
    assert "crawl_grant_source" in registry
    assert len(registry) == 1
    assert registry.get("cleanup_old_data") is None
    assert "Registered job handler for type: crawl_grant_source" in caplog.text


def test_reregistering_replaces_and_warns(caplog):
    registry = HandlerRegistry()
    registry.register("cleanup_old_data", lambda job: 1)
    caplog.set_level(logging.WARNING)
    replacement = lambda job: 2  # noqa: E731
    registry.register("cleanup_old_data", replacement)

    assert registry.get("cleanup_old_data").handler is replacement
    assert "Replaced job handler" in caplog.text


def test_decorator_and_unregister():
    registry = HandlerRegistry()

    @registry.handler("discover_grants")
    def discover(job):
        return "found"

    assert discover(Job(job_type="discover_grants")) == "found"
    assert registry.job_types() == ["discover_grants"]
    assert registry.missing(["discover_grants", "render_pdf"]) == ["render_pdf"]
    assert registry.unregister("discover_grants") is True
    assert registry.unregister("discover_grants") is False


def test_register_rejects_bad_input():
    registry = HandlerRegistry()
    with pytest.raises(ValueError):
        registry.register("", lambda job: None)
    with pytest.raises(TypeError):
        registry.register("crawl_grant_source", "not callable")


# --- perform_job ---


def test_perform_sync_and_async_handlers():
    job = Job(job_type="crawl_grant_source", payload={"sourceId": "abc"})

    async def async_handler(j):
        await asyncio.sleep(0)
        return j.payload["sourceId"]

    assert perform_job(lambda j: j.payload["sourceId"], job) == "abc"
    assert perform_job(async_handler, job) == "abc"
    assert perform_job(async_handler, job, timeout=1) == "abc"
    assert perform_job(lambda j: "done", job, timeout=1) == "done"


def test_perform_propagates_handler_errors():
    def handler(job):
        raise ValueError("source offline")

    with pytest.raises(ValueError, match="source offline"):
        perform_job(handler, Job(job_type="crawl_grant_source"))
    with pytest.raises(ValueError, match="source offline"):
        perform_job(handler, Job(job_type="crawl_grant_source"), timeout=1)


def test_perform_enforces_deadline():
    async def slow_async(job):
        await asyncio.sleep(1)

    job = Job(job_type="crawl_grant_source")
    with pytest.raises(JobTimeoutError, match="deadline"):
        perform_job(slow_async, job, timeout=0.05)
    with pytest.raises(JobTimeoutError, match="deadline"):
        perform_job(lambda j: time.sleep(1), job, timeout=0.05)
