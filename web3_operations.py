import logging
from datetime import datetime, timezone

from eth_abi.abi import default_codec
from eth_abi.exceptions import DecodingError
from requests.exceptions import RequestException
from web3 import Web3
from web3._utils.events import get_event_data
from web3.exceptions import Web3Exception

from errors import ChainQueryError
from models import FeeEvent

logger = logging.getLogger(__name__)

FEES_COLLECTED_ABI = {
    'anonymous': False,
    'name': 'FeesCollected',
    'type': 'event',
    'inputs': [
        {'indexed': True, 'internalType': 'address', 'name': '_token', 'type': 'address'},
        {'indexed': True, 'internalType': 'address', 'name': '_integrator', 'type': 'address'},
        {'indexed': False, 'internalType': 'uint256', 'name': '_integratorFee', 'type': 'uint256'},
        {'indexed': False, 'internalType': 'uint256', 'name': '_lifiFee', 'type': 'uint256'},
    ],
}

FEES_COLLECTED_SIGNATURE = "FeesCollected(address,address,uint256,uint256)"

CHAIN_ERRORS = (Web3Exception, RequestException, DecodingError, ValueError, KeyError)


class Web3Operations:
    """Reads FeesCollected events of one FeeCollector contract."""

    def __init__(self, chain_id, contract_address, provider_uri=None, w3=None):
        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(provider_uri))
        self.w3 = w3
        self.chain_id = chain_id
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.fees_collected_topic = Web3.to_hex(Web3.keccak(text=FEES_COLLECTED_SIGNATURE))
        self.arg_names = [arg['name'] for arg in FEES_COLLECTED_ABI['inputs']]

    def get_chain_head(self):
        try:
            return self.w3.eth.block_number
        except CHAIN_ERRORS as e:
            raise ChainQueryError(
                f"Could not read chain head: {e}", chain_id=self.chain_id) from e

    def get_events(self, start_block, end_block):
        """Decoded FeesCollected events in [start_block, end_block], in on-chain order.

        Nothing is returned unless every log decodes and every block timestamp
        resolves; any failure raises ChainQueryError.
        """
        if start_block > end_block:
            raise ChainQueryError(
                "Invalid block range", chain_id=self.chain_id,
                from_block=start_block, to_block=end_block)

        try:
            logs = self.w3.eth.get_logs({
                'fromBlock': start_block,
                'toBlock': end_block,
                'address': self.contract_address,
                'topics': [self.fees_collected_topic]
            })
            logs = sorted(logs, key=lambda log: (log['blockNumber'], log['logIndex']))

            timestamps = {}
            events = []
            for log in logs:
                block_number = log['blockNumber']
                if block_number not in timestamps:
                    timestamps[block_number] = self._get_block_timestamp(block_number)
                events.append(self.parse_event(log, timestamps[block_number]))
        except CHAIN_ERRORS as e:
            raise ChainQueryError(
                f"Error loading events: {e}", chain_id=self.chain_id,
                from_block=start_block, to_block=end_block) from e

        logger.debug(
            f"Loaded {len(events)} events from {len(timestamps)} blocks "
            f"on chain {self.chain_id}")
        return events

    def parse_event(self, log, timestamp):
        decoded = get_event_data(default_codec, FEES_COLLECTED_ABI, log)
        token, integrator, integrator_fee, lifi_fee = (
            decoded['args'][name] for name in self.arg_names)

        return FeeEvent(
            chain_id=self.chain_id,
            token=Web3.to_checksum_address(token),
            integrator=Web3.to_checksum_address(integrator),
            integrator_fee=int(integrator_fee),
            lifi_fee=int(lifi_fee),
            block_number=log['blockNumber'],
            transaction_hash=Web3.to_hex(log['transactionHash']),
            log_index=log['logIndex'],
            timestamp=timestamp,
        )

    def _get_block_timestamp(self, block_number):
        block = self.w3.eth.get_block(block_number)
        return datetime.fromtimestamp(block['timestamp'], tz=timezone.utc)
