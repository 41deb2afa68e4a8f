"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Storage
    download_dir: str = "./data/downloads"
    jobs_dir: str = "./data/jobs"

    # External extractor
    extractor_binary: str = "yt-dlp"
    source_url_template: str = "https://www.youtube.com/watch?v={source}"
    supported_format: str = "mp3"
    media_info_binary: str = "ffprobe"

    # Retention (0 keeps artifacts and job records forever)
    file_delete_timeout_hours: float = 0

    # Progress heuristics
    stall_check_interval_seconds: float = 10.0
    stall_threshold_seconds: float = 30.0
    stall_ceiling: int = 80
    stall_increment: int = 10
    output_recency_seconds: float = 60.0
    error_detail_max_chars: int = 2000

    # Service
    log_level: str = "INFO"
    log_file: Optional[str] = None
    port: int = 8000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "TUNEGRAB_"}

    @property
    def retention_seconds(self) -> float:
        return max(0.0, self.file_delete_timeout_hours * 3600)


settings = Settings()
