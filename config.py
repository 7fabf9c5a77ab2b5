import os

from dotenv import load_dotenv

load_dotenv()

# FeeCollector deployments to scrape
CHAIN_CONFIG = {
    'polygon': {
        'chain_id': 137,
        'contract_address': '0xbD6C7B0d2f68c2b7805d88388319cfB6EcB50eA9',
        'provider_uri': os.getenv('POLYGON_RPC_URL', 'https://polygon-rpc.com'),
        'oldest_block': 61500000
    }
    # Add more chains as needed:
    # 'arbitrum': {
    #     'chain_id': 42161,
    #     'contract_address': '0x...',
    #     'provider_uri': os.getenv('ARBITRUM_RPC_URL', ''),
    #     'oldest_block': 0,
    #     'chunk_size': 5000  # optional, defaults to BATCH_SIZE
    # }
}

# Scraping defaults, overridable per chain
BATCH_SIZE = int(os.getenv('BATCH_SIZE', '1000'))
CONFIRMATION_BLOCKS = int(os.getenv('CONFIRMATION_BLOCKS', '10'))
POLL_INTERVAL = float(os.getenv('POLL_INTERVAL', '15'))

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# Database configuration
DB_CONFIG = {
    'dbname': os.getenv('DB_NAME', 'fee_indexer'),
    'user': os.getenv('DB_USER', 'user'),
    'password': os.getenv('DB_PASSWORD', 'password'),
    'host': os.getenv('DB_HOST', 'localhost'),
    'port': int(os.getenv('DB_PORT', '5432'))
}
