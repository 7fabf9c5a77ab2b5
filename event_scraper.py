import logging

from errors import ScraperError

logger = logging.getLogger(__name__)


class EventScraper:
    """Advances the fee event index of one chain by at most one chunk per call.

    The scraper keeps no state between calls. Progress lives in the
    checkpoint store and is only advanced after the chunk's events have been
    stored, so a crash in between makes the next call repeat the same range;
    the event store drops the re-delivered events.

    At most one process_next_batch call per chain may run at a time.
    """

    def __init__(self, chain_id, checkpoint_store, event_source, event_store,
                 chunk_size, confirmation_blocks, oldest_block):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if confirmation_blocks < 0:
            raise ValueError("confirmation_blocks must be >= 0")
        self.chain_id = chain_id
        self.checkpoint_store = checkpoint_store
        self.event_source = event_source
        self.event_store = event_store
        self.chunk_size = chunk_size
        self.confirmation_blocks = confirmation_blocks
        self.oldest_block = oldest_block

    @classmethod
    def from_settings(cls, settings, checkpoint_store, event_source, event_store):
        return cls(
            chain_id=settings.chain_id,
            checkpoint_store=checkpoint_store,
            event_source=event_source,
            event_store=event_store,
            chunk_size=settings.chunk_size,
            confirmation_blocks=settings.confirmation_blocks,
            oldest_block=settings.oldest_block,
        )

    def get_block_range(self, last_processed_block, chain_head):
        """Next (start, end) range to scrape, or None when caught up."""
        confirmed_block = chain_head - self.confirmation_blocks
        if last_processed_block >= confirmed_block:
            return None
        end_block = min(last_processed_block + self.chunk_size, confirmed_block)
        return last_processed_block + 1, end_block

    def process_next_batch(self):
        start_block = end_block = None
        try:
            last_processed_block = self.checkpoint_store.get_checkpoint(
                self.chain_id, self.oldest_block)
            chain_head = self.event_source.get_chain_head()

            block_range = self.get_block_range(last_processed_block, chain_head)
            if block_range is None:
                logger.info(f"[chain {self.chain_id}] No new blocks to process")
                return

            start_block, end_block = block_range
            logger.info(
                f"[chain {self.chain_id}] Processing blocks {start_block:,}-{end_block:,}")

            events = self.event_source.get_events(start_block, end_block)
            inserted = self.event_store.insert_batch(events)
            self.checkpoint_store.set_checkpoint(self.chain_id, end_block)

            logger.info(
                f"[chain {self.chain_id}] Successfully processed up to block {end_block:,} "
                f"({len(events):,} events, {inserted:,} new)")
        except ScraperError as e:
            if start_block is None:
                logger.error(f"[chain {self.chain_id}] Error processing batch: {e}")
            else:
                logger.error(
                    f"[chain {self.chain_id}] Error processing blocks "
                    f"{start_block:,}-{end_block:,}: {e}")
            raise
