"""
Configuration for the slot ledger service.
Values come from environment variables, with a .env file loaded first if present.
"""

import os
from dataclasses import dataclass
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

DEFAULT_WALLET_ADDRESS = "0x13322cc8958e50ed5363442352d0D1110C8768dA"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    # Payment
    wallet_address: str = DEFAULT_WALLET_ADDRESS
    payment_amount: Decimal = Decimal("0.001")  # ether
    total_slots: int = 1_000_000

    # Etherscan
    etherscan_api_key: str = ""
    etherscan_api_url: str = "https://api.etherscan.io/v2/api"
    etherscan_chain_id: int = 1
    ledger_timeout_seconds: float = 10.0

    # Reconciler
    reconciler_enabled: bool = True
    reconcile_interval_seconds: float = 30.0
    pending_window_hours: float = 24.0

    # Storage
    database_url: str = "sqlite:///slotledger.db"

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            wallet_address=os.getenv("MAIN_WALLET_ADDRESS", DEFAULT_WALLET_ADDRESS),
            payment_amount=Decimal(os.getenv("PAYMENT_AMOUNT", "0.001")),
            total_slots=int(os.getenv("TOTAL_SLOTS", "1000000")),
            etherscan_api_key=os.getenv("ETHERSCAN_API_KEY", ""),
            etherscan_api_url=os.getenv("ETHERSCAN_API_URL", "https://api.etherscan.io/v2/api"),
            etherscan_chain_id=int(os.getenv("ETHERSCAN_CHAIN_ID", "1")),
            ledger_timeout_seconds=float(os.getenv("LEDGER_TIMEOUT_SECONDS", "10")),
            reconciler_enabled=_env_bool("RECONCILER_ENABLED", True),
            reconcile_interval_seconds=float(os.getenv("RECONCILE_INTERVAL_SECONDS", "30")),
            pending_window_hours=float(os.getenv("PENDING_WINDOW_HOURS", "24")),
            database_url=os.getenv("DATABASE_URL", "sqlite:///slotledger.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
