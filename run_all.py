# Start with: python run_all.py
import logging
from multiprocessing import Process

import uvicorn

from lending.infrastructure.config import get_config
from lending.scheduler import run_scheduler


def run_api():
    config = get_config()
    uvicorn.run(
        "lending.api.main:app",
        host=config.api.host,
        port=config.api.port,
        workers=config.api.workers,
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s:%(processName)s:%(message)s"
    )
    logging.info("🚀 Starting lending API and sweep scheduler...")

    api_process = Process(target=run_api, name="LendingAPI")
    scheduler_process = Process(target=run_scheduler, name="Scheduler")

    api_process.start()
    logging.info(f"🌐 LendingAPI PID: {api_process.pid}")
    scheduler_process.start()
    logging.info(f"⏰ Scheduler PID: {scheduler_process.pid}")

    api_process.join()
    scheduler_process.join()
