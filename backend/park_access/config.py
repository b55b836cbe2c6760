# park access configuration
# loads env vars for mongodb, jwt, pin policy, lock controller, invites

import os
from pathlib import Path
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# load .env from project root
load_dotenv(Path(__file__).parent.parent.parent / ".env")


class Settings(BaseSettings):
    # mongodb
    MONGODB_URI: str = os.getenv("MONGODB_URI", "")
    MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE", "park_access_db")

    # jwt auth (identity comes from the `sub` claim)
    JWT_SECRET: str = os.getenv("JWT_SECRET", "park-access-dev-secret-change-in-production")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # pin policy
    PIN_LENGTH: int = 6
    DEFAULT_PIN_WINDOW_MINUTES: int = 5
    PIN_COLLISION_RETRIES: int = 10
    PIN_HASH_SECRET: str = os.getenv("PIN_HASH_SECRET", "park-access-pin-dev-secret")

    # lock controller: "simulated" or "ttlock"
    LOCK_CONTROLLER: str = os.getenv("LOCK_CONTROLLER", "simulated")
    LOCK_ACTUATION_ATTEMPTS: int = 3
    LOCK_ACTUATION_BACKOFF_SECONDS: float = 0.5
    LOCK_ACTUATION_TIMEOUT_SECONDS: float = 10.0

    # ttlock / sciener cloud
    TTLOCK_BASE_URL: str = os.getenv("TTLOCK_BASE_URL", "https://euapi.sciener.com")
    TTLOCK_CLIENT_ID: str = os.getenv("TTLOCK_CLIENT_ID", "")
    TTLOCK_CLIENT_SECRET: str = os.getenv("TTLOCK_CLIENT_SECRET", "")
    TTLOCK_USERNAME: str = os.getenv("TTLOCK_USERNAME", "")
    TTLOCK_PASSWORD: str = os.getenv("TTLOCK_PASSWORD", "")

    # invites
    INVITE_TOKEN_BYTES: int = 24
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:3000")

    # facility
    FACILITY_TIMEZONE: str = os.getenv("FACILITY_TIMEZONE", "Asia/Tokyo")
    FACILITY_DEVICE_TOKEN: str = os.getenv("FACILITY_DEVICE_TOKEN", "")
    REQUIRE_VACCINATION_FOR_ENTRY: bool = True

    # housekeeping
    HOUSEKEEPING_RETENTION_HOURS: int = 24

    # cors
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
