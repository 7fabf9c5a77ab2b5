from dataclasses import dataclass
from datetime import datetime

from web3 import Web3


@dataclass(frozen=True)
class FeeEvent:
    """One decoded FeesCollected log.

    Stored once per (chain_id, transaction_hash, log_index) and never
    modified afterwards.
    """
    chain_id: int
    token: str
    integrator: str
    integrator_fee: int
    lifi_fee: int
    block_number: int
    transaction_hash: str
    log_index: int
    timestamp: datetime

    def __post_init__(self):
        if self.integrator_fee < 0 or self.lifi_fee < 0:
            raise ValueError("fee amounts must be unsigned")
        if self.block_number < 0 or self.log_index < 0:
            raise ValueError("block_number and log_index must be >= 0")

    @property
    def key(self):
        return (self.chain_id, self.transaction_hash, self.log_index)

    def as_row(self):
        return (
            self.chain_id,
            self.token,
            self.integrator,
            self.integrator_fee,
            self.lifi_fee,
            self.block_number,
            self.transaction_hash,
            self.log_index,
            self.timestamp,
        )


CHAIN_KEYS = {
    'chain_id',
    'contract_address',
    'provider_uri',
    'oldest_block',
    'chunk_size',
    'confirmation_blocks',
}


@dataclass(frozen=True)
class ChainSettings:
    """Everything needed to scrape one chain."""
    name: str
    chain_id: int
    contract_address: str
    provider_uri: str
    oldest_block: int
    chunk_size: int
    confirmation_blocks: int

    def __post_init__(self):
        if self.chain_id <= 0:
            raise ValueError(f"{self.name}: chain_id must be > 0")
        if self.chunk_size <= 0:
            raise ValueError(f"{self.name}: chunk_size must be > 0")
        if self.confirmation_blocks < 0:
            raise ValueError(f"{self.name}: confirmation_blocks must be >= 0")
        if self.oldest_block < 0:
            raise ValueError(f"{self.name}: oldest_block must be >= 0")
        if not self.provider_uri:
            raise ValueError(f"{self.name}: provider_uri is not set")
        if not Web3.is_address(self.contract_address):
            raise ValueError(
                f"{self.name}: invalid contract_address {self.contract_address!r}")

    @classmethod
    def from_config(cls, name, chain_config, chunk_size, confirmation_blocks):
        unknown = set(chain_config) - CHAIN_KEYS
        if unknown:
            raise ValueError(f"{name}: unknown chain config keys {sorted(unknown)}")
        for required in ('chain_id', 'contract_address', 'provider_uri', 'oldest_block'):
            if required not in chain_config:
                raise ValueError(f"{name}: missing required '{required}'")

        return cls(
            name=name,
            chain_id=int(chain_config['chain_id']),
            contract_address=chain_config['contract_address'],
            provider_uri=chain_config['provider_uri'],
            oldest_block=int(chain_config['oldest_block']),
            chunk_size=int(chain_config.get('chunk_size', chunk_size)),
            confirmation_blocks=int(
                chain_config.get('confirmation_blocks', confirmation_blocks)),
        )
