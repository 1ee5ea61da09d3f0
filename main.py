import logging
import time

from grantflow import Client, EngineSettings
from grantflow.scheduler import CRAWL_JOB_TYPE, ScheduleTriggerLayer, StaticWorkSource
from grantflow.storage.memory_storage import MemoryStorage


def crawl_grant_source(job):
    print(f"Crawling {job.payload['sourceUrl']} (attempt {job.retry_count + 1})")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    # 1. Build a client around an in-memory store
    client = Client(MemoryStorage(), settings=EngineSettings(poll_interval=1.0))
    client.engine.register_handler(CRAWL_JOB_TYPE, crawl_grant_source)

    # 2. Attach a trigger layer fed by a static list of sources
    sources = StaticWorkSource(
        [
            {"id": "sfi", "name": "SFI", "url": "https://www.sfi.ie", "crawlSchedule": "daily"},
            {"id": "epa", "name": "EPA", "url": "https://www.epa.ie", "crawlSchedule": "daily"},
        ]
    )
    client.scheduler = ScheduleTriggerLayer(client.engine, sources)

    # 3. Fire the daily crawl by hand and queue one manual crawl
    client.scheduler.fire("daily_crawl")
    job_id = client.scheduler.enqueue_manual(
        {"id": "ei", "name": "Enterprise Ireland", "url": "https://www.enterprise-ireland.com"}
    )

    # 4. Run the engine for a moment
    client.engine.start()
    time.sleep(3)
    client.engine.stop()

    print(f"\nManual job: {client.get_job_details(job_id)}")
    print(f"Counts: {client.get_state_counts()}")
