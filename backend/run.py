"""
Run the automation scheduler worker.

Usage:
    python run.py                  # Tick scheduled rules and escalations until stopped
    python run.py --once           # Run a single tick of each job and exit
    python run.py --create-indexes # Create MongoDB indexes and exit
"""
import argparse
import signal
import threading

from automation.container import build_mongo_container
from automation.repositories.mongo_client import create_indexes, close_connection
from automation.scheduler import AutomationScheduler
from automation.utils.logger import setup_logging, get_logger


def main():
    parser = argparse.ArgumentParser(description="Run the ticket automation scheduler")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one scheduled-rule tick and one escalation tick, then exit"
    )
    parser.add_argument(
        "--create-indexes",
        action="store_true",
        help="Create MongoDB indexes and exit"
    )
    
    args = parser.parse_args()
    setup_logging()
    logger = get_logger("automation.run")
    
    if args.create_indexes:
        create_indexes()
        close_connection()
        return
    
    container = build_mongo_container()
    scheduler = AutomationScheduler(container)
    
    if args.once:
        scheduler.run_scheduled_rules()
        scheduler.process_escalations()
        container.close()
        close_connection()
        return
    
    stopped = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stopped.set())
    signal.signal(signal.SIGTERM, lambda *_: stopped.set())
    
    scheduler.start()
    logger.info("Automation worker running, press Ctrl+C to stop")
    stopped.wait()
    
    scheduler.stop()
    container.close()
    close_connection()


if __name__ == "__main__":
    main()
