"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.
Both the client layer and the development server read their defaults from here.

WHAT IS HAPPENING HERE:
Every timing that governs resilience lives in one place: request timeouts,
the HTTP retry/backoff policy, the socket heartbeat and the reconnect budget.
None of these are protocol-mandated, so they are tunable through env vars
or a `.env` file rather than hardcoded deep inside a client.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    API_BASE_URL: str = "http://127.0.0.1:3001"
    PORT: int = 3001
    LOG_LEVEL: str = "INFO"

    # HTTP
    REQUEST_TIMEOUT_S: float = 30.0
    REFRESH_TIMEOUT_S: float = 10.0
    REFRESH_ENDPOINT: str = "/auth/refresh"
    HTTP_MAX_RETRIES: int = 3
    HTTP_BASE_DELAY_MS: int = 1000
    HTTP_BACKOFF_MULTIPLIER: float = 2.0

    # Generation socket
    WS_NAMESPACE: str = "/generation"
    WS_CONNECT_TIMEOUT_S: float = 10.0
    WS_HEARTBEAT_INTERVAL_S: float = 30.0
    WS_HIGH_LATENCY_MS: float = 1000.0
    WS_RECONNECT_BASE_DELAY_MS: int = 1000
    WS_MAX_RECONNECT_ATTEMPTS: int = 5

    # Token persistence
    TOKEN_FILE: str = "~/.scriptstream/tokens.json"

    # Development server
    ACCESS_TOKEN_TTL_S: int = 900
    SIMULATION_STEP_DELAY_S: float = 0.4

    # Tolerate missing env vars to allow easy out-of-the-box execution
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
