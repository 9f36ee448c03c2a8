from pydantic import Field, field_validator
from stellar_sdk import Network

from charon.config.config_data_types import BaseClientModel, ClientConfigEnum, validate_stellar_amount


class TargetChain(ClientConfigEnum):
    SOLANA = "solana"


class BridgeConfigMap(BaseClientModel):
    network_passphrase: str = Field(
        default=Network.TESTNET_NETWORK_PASSPHRASE,
        json_schema_extra={"prompt": "Enter the Stellar network passphrase"},
    )
    horizon_url: str = Field(
        default="https://horizon-testnet.stellar.org",
        json_schema_extra={"prompt": "Enter the Horizon server url"},
    )
    solana_rpc_url: str = Field(
        default="https://api.devnet.solana.com",
        json_schema_extra={"prompt": "Enter the Solana RPC url"},
    )
    target_chain: TargetChain = Field(
        default=TargetChain.SOLANA,
        json_schema_extra={"prompt": "Which ledger holds the wrapped asset?"},
    )
    validator_staking_amount: str = Field(
        default="100",
        json_schema_extra={"prompt": "How much does a validator stake into its escrow account?"},
    )
    vault_starting_balance: str = Field(
        default="2",
        json_schema_extra={"prompt": "Starting balance of a freshly created vault"},
    )
    vault_top_up_amount: str = Field(
        default="0.5",
        json_schema_extra={"prompt": "Amount a joining validator pays into the vault to cover the new signer"},
    )
    escrow_starting_balance: str = Field(
        default="10",
        json_schema_extra={"prompt": "Starting balance of an escrow transaction account"},
    )
    reclaim_after_seconds: int = Field(
        default=300,
        gt=0,
        json_schema_extra={"prompt": "Seconds before the user can reclaim a locked balance"},
    )
    transaction_timeout: int = Field(
        default=30,
        gt=0,
        json_schema_extra={"prompt": "Validity window in seconds of built source ledger transactions"},
    )
    client_retry_count: int = Field(
        default=3,
        ge=1,
        json_schema_extra={"prompt": "How many times should ledger reads be attempted?"},
    )
    client_retry_interval: float = Field(
        default=0.5,
        ge=0,
        json_schema_extra={"prompt": "Seconds between ledger read attempts"},
    )
    client_request_timeout: float = Field(
        default=10.0,
        gt=0,
        json_schema_extra={"prompt": "Seconds before a single ledger request times out"},
    )

    @field_validator(
        "validator_staking_amount",
        "vault_starting_balance",
        "vault_top_up_amount",
        "escrow_starting_balance",
        mode="before",
    )
    @classmethod
    def validate_amounts(cls, v):
        return validate_stellar_amount(str(v))
