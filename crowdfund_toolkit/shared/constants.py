"""All constants for the project"""

import os

from dotenv import load_dotenv

from crowdfund_toolkit.shared.exceptions import ConfigurationException
from crowdfund_toolkit.shared.retry import PollPolicy

load_dotenv()


class NetworkConstants:
    """Network endpoints and deployed package ids"""

    DEFAULT_NETWORK = os.getenv("CF_NETWORK", "devnet")

    NETWORK_TO_RPC = {
        "devnet": os.getenv("CF_DEVNET_RPC_URL")
        or "https://fullnode.devnet.sui.io:443",
        "testnet": os.getenv("CF_TESTNET_RPC_URL")
        or "https://fullnode.testnet.sui.io:443",
        "mainnet": os.getenv("CF_MAINNET_RPC_URL")
        or "https://fullnode.mainnet.sui.io:443",
        "localnet": os.getenv("CF_LOCALNET_RPC_URL")
        or "http://127.0.0.1:9000",
    }

    NETWORK_TO_PACKAGE = {
        "devnet": os.getenv("CF_DEVNET_PACKAGE_ID")
        or "0xb1b127b4ec9bba67a818e96fb597c465ebb8779f6836c1767f47349d5dc55132",
        "testnet": os.getenv("CF_TESTNET_PACKAGE_ID")
        or "0xb1b127b4ec9bba67a818e96fb597c465ebb8779f6836c1767f47349d5dc55132",
        "mainnet": os.getenv("CF_MAINNET_PACKAGE_ID") or None,
        "localnet": os.getenv("CF_LOCALNET_PACKAGE_ID") or None,
    }

    @staticmethod
    def get_rpc_url(network: str) -> str:
        """Get RPC URL for specified network"""
        if network not in NetworkConstants.NETWORK_TO_RPC:
            raise ConfigurationException(f"Network {network} not supported")

        rpc_url = NetworkConstants.NETWORK_TO_RPC[network]
        if not rpc_url:
            raise ConfigurationException(f"RPC URL not set for {network}")

        return rpc_url

    @staticmethod
    def get_package_id(network: str) -> str:
        """Get the crowdfunding package id deployed on a network"""
        if network not in NetworkConstants.NETWORK_TO_PACKAGE:
            raise ConfigurationException(f"Network {network} not supported")

        package_id = NetworkConstants.NETWORK_TO_PACKAGE[network]
        if not package_id:
            raise ConfigurationException(
                f"Crowdfunding package id not set for {network} "
                f"(set CF_{network.upper()}_PACKAGE_ID)"
            )

        return package_id


class CrowdfundConstants:
    """Contract-level constants"""

    MODULE = "crowd"
    CLOCK_OBJECT_ID = "0x6"

    SUI_DECIMALS = 9
    MIST_PER_SUI = 1_000_000_000

    # Event query paging
    EVENT_PAGE_LIMIT = 50
    MAX_EVENT_PAGES = int(os.getenv("CF_MAX_EVENT_PAGES", "4"))

    DEFAULT_GAS_BUDGET = int(os.getenv("CF_GAS_BUDGET", "10000000"))

    SLUG_MAX_LENGTH = 50
    DEFAULT_TITLE = "Campaign"
    DEFAULT_DESCRIPTION = "No description available"

    CACHE_DIR = os.getenv("CF_CACHE_DIR", ".cache")


# Wait after a withdrawal before trusting the event log (3s, then 5 checks 1s apart)
WITHDRAWAL_CONFIRMATION_POLICY = PollPolicy(
    max_attempts=5, delay=1.0, initial_delay=3.0
)

# Transaction finality polling
FINALITY_POLICY = PollPolicy(max_attempts=10, delay=1.0)
