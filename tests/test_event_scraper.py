"""
Unit tests for the batch scraper.

Uses in-memory collaborators so every step of a scrape cycle can be observed
and made to fail.
"""

from datetime import datetime, timezone

import pytest

from errors import ChainQueryError, CheckpointWriteError, EventPersistError
from event_scraper import EventScraper
from models import FeeEvent

CHAIN_ID = 137


def make_event(block_number, log_index=0, tx_hash=None):
    return FeeEvent(
        chain_id=CHAIN_ID,
        token="0x" + "11" * 20,
        integrator="0x" + "22" * 20,
        integrator_fee=10**18,
        lifi_fee=5 * 10**17,
        block_number=block_number,
        transaction_hash=tx_hash or "0x%064x" % block_number,
        log_index=log_index,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class FakeCheckpointStore:
    def __init__(self, checkpoints=None, fail_writes=0):
        self.checkpoints = dict(checkpoints or {})
        self.fail_writes = fail_writes
        self.history = []

    def get_checkpoint(self, chain_id, default):
        return self.checkpoints.get(chain_id, default)

    def set_checkpoint(self, chain_id, block_number):
        if self.fail_writes:
            self.fail_writes -= 1
            raise CheckpointWriteError("write rejected", chain_id=chain_id, block_number=block_number)
        self.checkpoints[chain_id] = block_number
        self.history.append(block_number)
        return block_number


class FakeChain:
    def __init__(self, head, events=(), fail=False):
        self.head = head
        self.events = list(events)
        self.fail = fail
        self.calls = []

    def get_chain_head(self):
        return self.head

    def get_events(self, start_block, end_block):
        self.calls.append((start_block, end_block))
        if self.fail:
            raise ChainQueryError("rpc down", chain_id=CHAIN_ID,
                                  from_block=start_block, to_block=end_block)
        return [e for e in self.events if start_block <= e.block_number <= end_block]


class FakeEventStore:
    def __init__(self, fail=False):
        self.rows = {}
        self.fail = fail
        self.batches = []

    def insert_batch(self, events):
        self.batches.append(list(events))
        if not events:
            return 0
        if self.fail:
            raise EventPersistError("disk full", chain_id=CHAIN_ID)
        inserted = 0
        for event in events:
            if event.key not in self.rows:
                self.rows[event.key] = event
                inserted += 1
        return inserted


def make_scraper(checkpoints, chain, store, chunk_size=50, confirmation_blocks=10, oldest_block=0):
    return EventScraper(
        chain_id=CHAIN_ID,
        checkpoint_store=checkpoints,
        event_source=chain,
        event_store=store,
        chunk_size=chunk_size,
        confirmation_blocks=confirmation_blocks,
        oldest_block=oldest_block,
    )


class TestBlockRange:
    """Test range computation against the confirmed head."""

    def test_range_limited_by_chunk_size(self):
        scraper = make_scraper(FakeCheckpointStore(), FakeChain(200), FakeEventStore())
        assert scraper.get_block_range(100, 200) == (101, 150)

    def test_range_truncated_to_confirmed_head(self):
        scraper = make_scraper(FakeCheckpointStore(), FakeChain(200), FakeEventStore(), chunk_size=500)
        assert scraper.get_block_range(100, 200) == (101, 190)

    def test_single_block_range(self):
        scraper = make_scraper(FakeCheckpointStore(), FakeChain(200), FakeEventStore())
        assert scraper.get_block_range(189, 200) == (190, 190)

    def test_caught_up_returns_none(self):
        scraper = make_scraper(FakeCheckpointStore(), FakeChain(200), FakeEventStore())
        assert scraper.get_block_range(190, 200) is None
        assert scraper.get_block_range(250, 200) is None

    def test_head_below_lag_returns_none(self):
        scraper = make_scraper(FakeCheckpointStore(), FakeChain(5), FakeEventStore())
        assert scraper.get_block_range(0, 5) is None

    def test_invalid_parameters_rejected(self):
        with pytest.raises(ValueError):
            make_scraper(FakeCheckpointStore(), FakeChain(0), FakeEventStore(), chunk_size=0)
        with pytest.raises(ValueError):
            make_scraper(FakeCheckpointStore(), FakeChain(0), FakeEventStore(), confirmation_blocks=-1)


class TestProcessNextBatch:
    """Test full scrape cycles."""

    def test_scenario_a_advances_one_chunk(self):
        events = [make_event(b) for b in (100, 101, 120, 150, 151, 189)]
        checkpoints = FakeCheckpointStore({CHAIN_ID: 100})
        chain = FakeChain(200, events)
        store = FakeEventStore()

        make_scraper(checkpoints, chain, store).process_next_batch()

        assert chain.calls == [(101, 150)]
        assert sorted(e.block_number for e in store.rows.values()) == [101, 120, 150]
        assert checkpoints.checkpoints[CHAIN_ID] == 150

    def test_scenario_c_noop_when_caught_up(self):
        checkpoints = FakeCheckpointStore({CHAIN_ID: 190})
        chain = FakeChain(195, [make_event(191)])
        store = FakeEventStore()

        make_scraper(checkpoints, chain, store).process_next_batch()

        assert chain.calls == []
        assert store.batches == []
        assert checkpoints.checkpoints[CHAIN_ID] == 190
        assert checkpoints.history == []

    def test_starts_from_oldest_block_without_checkpoint(self):
        checkpoints = FakeCheckpointStore()
        chain = FakeChain(1000, [make_event(500), make_event(520)])
        store = FakeEventStore()

        make_scraper(checkpoints, chain, store, oldest_block=499).process_next_batch()

        assert chain.calls == [(500, 549)]
        assert len(store.rows) == 2
        assert checkpoints.checkpoints[CHAIN_ID] == 549

    def test_empty_range_still_advances_checkpoint(self):
        checkpoints = FakeCheckpointStore({CHAIN_ID: 0})
        store = FakeEventStore()

        make_scraper(checkpoints, FakeChain(1000), store).process_next_batch()

        assert checkpoints.checkpoints[CHAIN_ID] == 50
        assert store.rows == {}

    def test_load_failure_leaves_checkpoint_untouched(self):
        checkpoints = FakeCheckpointStore({CHAIN_ID: 100})
        store = FakeEventStore()

        with pytest.raises(ChainQueryError) as exc_info:
            make_scraper(checkpoints, FakeChain(200, fail=True), store).process_next_batch()

        assert exc_info.value.from_block == 101
        assert exc_info.value.to_block == 150
        assert store.batches == []
        assert checkpoints.history == []

    def test_persist_failure_leaves_checkpoint_untouched(self):
        checkpoints = FakeCheckpointStore({CHAIN_ID: 100})
        chain = FakeChain(200, [make_event(110)])

        with pytest.raises(EventPersistError):
            make_scraper(checkpoints, chain, FakeEventStore(fail=True)).process_next_batch()

        assert checkpoints.checkpoints[CHAIN_ID] == 100
        assert checkpoints.history == []

    def test_scenario_d_retry_after_checkpoint_failure(self):
        events = [make_event(110, 0), make_event(110, 1), make_event(140)]
        checkpoints = FakeCheckpointStore({CHAIN_ID: 100}, fail_writes=1)
        chain = FakeChain(200, events)
        store = FakeEventStore()
        scraper = make_scraper(checkpoints, chain, store)

        with pytest.raises(CheckpointWriteError):
            scraper.process_next_batch()
        assert len(store.rows) == 3
        assert checkpoints.checkpoints[CHAIN_ID] == 100

        scraper.process_next_batch()

        assert chain.calls == [(101, 150), (101, 150)]
        assert len(store.rows) == 3
        assert checkpoints.checkpoints[CHAIN_ID] == 150

    def test_retries_never_duplicate_events(self):
        events = [make_event(b, i) for b in range(101, 300, 7) for i in range(2)]
        chain = FakeChain(400, events)
        store = FakeEventStore()

        for _ in range(3):
            checkpoints = FakeCheckpointStore({CHAIN_ID: 100})
            scraper = make_scraper(checkpoints, chain, store)
            for _ in range(10):
                scraper.process_next_batch()

        expected = {e.key for e in events if e.block_number <= 390}
        assert set(store.rows) == expected

    def test_checkpoint_is_monotonic_and_ranges_are_bounded(self):
        events = [make_event(b) for b in range(1, 400, 3)]
        checkpoints = FakeCheckpointStore({CHAIN_ID: 0})
        chain = FakeChain(100, events)
        store = FakeEventStore()
        scraper = make_scraper(checkpoints, chain, store, chunk_size=25)

        for head in (100, 100, 130, 125) + (300,) * 8:
            chain.head = head
            scraper.process_next_batch()

        assert checkpoints.history == sorted(checkpoints.history)
        assert checkpoints.checkpoints[CHAIN_ID] == 290
        previous_end = 0
        for start, end in chain.calls:
            assert start == previous_end + 1
            assert end - start < 25
            previous_end = end
        for batch, (start, end) in zip(store.batches, chain.calls):
            assert all(start <= e.block_number <= end for e in batch)
