class ScraperError(Exception):
    """Base class for failures of a scrape cycle.

    Carries the chain and block range the failing operation was working on so
    callers can log or retry without parsing the message.
    """

    def __init__(self, message, chain_id=None, from_block=None, to_block=None):
        self.chain_id = chain_id
        self.from_block = from_block
        self.to_block = to_block
        super().__init__(message)

    def __str__(self):
        message = super().__str__()
        context = []
        if self.chain_id is not None:
            context.append(f"chain {self.chain_id}")
        if self.from_block is not None and self.to_block is not None:
            context.append(f"blocks {self.from_block}-{self.to_block}")
        elif self.to_block is not None:
            context.append(f"block {self.to_block}")
        if context:
            return f"{message} ({', '.join(context)})"
        return message


class ChainQueryError(ScraperError):
    """RPC transport, range or log decoding failure."""


class EventPersistError(ScraperError):
    """Bulk insert failed for a reason other than a duplicate event."""


class CheckpointReadError(ScraperError):
    """The checkpoint table could not be read."""


class CheckpointWriteError(ScraperError):
    """The checkpoint upsert failed or returned no row."""

    def __init__(self, message, chain_id=None, block_number=None):
        super().__init__(message, chain_id=chain_id, to_block=block_number)

    @property
    def block_number(self):
        return self.to_block


class EventReadError(ScraperError):
    """Stored events could not be read back."""
