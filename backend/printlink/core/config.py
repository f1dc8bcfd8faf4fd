"""
PrintLink — Configuration settings.

Loads from environment variables (PRINTLINK_*) with sensible defaults.
Every timeout is an overall budget for one command, covering queueing,
all attempts and the retry backoff.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Client settings loaded from environment."""

    # Per-command overall timeouts (seconds)
    connection_test_timeout: float = Field(5.0, gt=0)
    list_files_timeout: float = Field(10.0, gt=0)
    delete_file_timeout: float = Field(10.0, gt=0)
    start_print_timeout: float = Field(10.0, gt=0)
    status_timeout: float = Field(5.0, gt=0)
    job_control_timeout: float = Field(10.0, gt=0)
    job_status_timeout: float = Field(5.0, gt=0)

    # Transport-failure retry policy: at most one silent retry
    max_retries: int = Field(1, ge=0, le=1)
    retry_backoff: float = Field(0.5, ge=0)

    # ACT framing
    act_max_frame_bytes: int = Field(1024 * 1024, gt=0)
    act_read_chunk_bytes: int = Field(8192, gt=0)
    # Quiet time before a frame ending in ",end" without CRLF is accepted
    act_end_settle: float = Field(0.2, gt=0)

    # HTTP session reuse
    cache_enabled: bool = True
    cache_idle_timeout: float = Field(60.0, gt=0)

    # Worker pool for concurrent commands
    max_workers: int = Field(8, ge=1)

    log_level: str = "INFO"

    class Config:
        env_prefix = "PRINTLINK_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
