import logging
from functools import lru_cache
from typing import Annotated, List, Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

MAX_FEE_BASIS_POINTS = 3000

# Hardhat's first dev account, the deployer of a local node.
DEV_ADMIN_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PAPER_LEDGER_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # App
    app_name: str = "Paper Ledger API"
    log_level: str = "INFO"
    allowed_origins: Annotated[List[str], NoDecode] = ["http://localhost:8097"]
    require_signatures: bool = True
    signature_max_age_seconds: int = 300  # clock skew allowed on signed request messages
    dev_tools: bool = False  # exposes /auth helpers that handle private keys
    host: str = "127.0.0.1"
    port: int = 8090

    # Ledger
    admin_address: str = DEV_ADMIN_ADDRESS
    treasury_address: Optional[str] = None  # falls back to admin_address
    fee_basis_points: int = 500
    data_file: Optional[str] = None

    # Collaborators
    origin_backend: Literal["memory", "web3"] = "memory"
    transfer_backend: Literal["memory", "web3"] = "memory"
    rpc_url: str = "http://127.0.0.1:8545"
    artifacts_dir: str = "artifacts/contracts"
    origin_contract_name: str = "MockOriginProtocol"
    origin_contract_address: Optional[str] = None
    operator_private_key: Optional[str] = None

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("fee_basis_points")
    @classmethod
    def check_fee(cls, v: int) -> int:
        if v < 0 or v > MAX_FEE_BASIS_POINTS:
            raise ValueError(f"fee_basis_points must be between 0 and {MAX_FEE_BASIS_POINTS}")
        return v

    @property
    def treasury(self) -> str:
        return self.treasury_address or self.admin_address


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
