import argparse
import logging
import sys
import time

import psycopg2

from config import (BATCH_SIZE, CHAIN_CONFIG, CONFIRMATION_BLOCKS, DB_CONFIG,
                    LOG_LEVEL, POLL_INTERVAL)
from db_operations import DatabaseOperations
from errors import ScraperError
from event_scraper import EventScraper
from models import ChainSettings
from web3_operations import Web3Operations

logger = logging.getLogger(__name__)


def load_chain_settings(names, chunk_size=None):
    settings = []
    for name in names:
        if name not in CHAIN_CONFIG:
            raise ValueError(f"Chain {name} not found in config")
        chain_config = dict(CHAIN_CONFIG[name])
        if chunk_size:
            # Command line wins over per-chain overrides
            chain_config['chunk_size'] = chunk_size
        settings.append(ChainSettings.from_config(
            name, chain_config,
            chunk_size=BATCH_SIZE,
            confirmation_blocks=CONFIRMATION_BLOCKS))
    return settings


class ChainWorker:
    """Scraper for one chain with its own database connection.

    A dropped connection is replaced before the next cycle instead of
    failing every cycle after it.
    """

    def __init__(self, settings, db_config):
        self.settings = settings
        self.db_ops = DatabaseOperations(db_config)
        self.event_source = Web3Operations(
            settings.chain_id, settings.contract_address, settings.provider_uri)
        self.scraper = self._build_scraper()

    def _build_scraper(self):
        return EventScraper.from_settings(
            self.settings, self.db_ops.checkpoint_store(),
            self.event_source, self.db_ops.event_store())

    def reconnect_if_needed(self):
        try:
            if self.db_ops.reconnect():
                self.scraper = self._build_scraper()
        except psycopg2.OperationalError as e:
            logger.error(f"[{self.settings.name}] Could not reconnect to database: {e}")

    def close(self):
        self.db_ops.close()


def run_cycle(scrapers):
    """Run one batch per chain; return the number of chains that failed."""
    failures = 0
    for scraper in scrapers:
        try:
            scraper.process_next_batch()
        except ScraperError:
            failures += 1
    return failures


def poll(workers, interval, cycles=None):
    """Scrape every chain each `interval` seconds, forever unless `cycles` is set."""
    completed = 0
    while cycles is None or completed < cycles:
        for worker in workers:
            worker.reconnect_if_needed()
        run_cycle([worker.scraper for worker in workers])
        completed += 1
        time.sleep(interval)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Index FeesCollected events into PostgreSQL')
    parser.add_argument('--chain', action='append', dest='chains',
                        help='Chain to scrape (repeatable, default: all configured chains)')
    parser.add_argument('--chunk-size', type=int, help=f'Blocks per batch (default: {BATCH_SIZE})')
    parser.add_argument('--once', action='store_true', help='Process a single batch per chain and exit')
    parser.add_argument('--interval', type=float, default=POLL_INTERVAL,
                        help=f'Seconds between batches (default: {POLL_INTERVAL})')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        chain_settings = load_chain_settings(args.chains or list(CHAIN_CONFIG), args.chunk_size)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    workers = []
    try:
        for settings in chain_settings:
            workers.append(ChainWorker(settings, DB_CONFIG))
        workers[0].db_ops.setup_database()
        logger.info(f"Scraping {', '.join(s.name for s in chain_settings)}")

        if args.once:
            return 1 if run_cycle([worker.scraper for worker in workers]) else 0

        poll(workers, args.interval)
    except KeyboardInterrupt:
        logger.info("Stopped")
        return 0
    finally:
        for worker in workers:
            worker.close()


if __name__ == "__main__":
    sys.exit(main())
