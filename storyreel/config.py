"""
StoryReel Configuration
Centralized settings management using Pydantic Settings
"""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "StoryReel"
    debug: bool = False
    app_version: str = "1.0.0"

    # ==========================================================================
    # Google Gemini
    # ==========================================================================
    gemini_api_key: str = Field(default="", description="Google Gemini API Key")
    gemini_model: str = Field(default="gemini-2.0-flash", description="Storyboard planning model")
    max_scenes_limit: int = Field(default=10, ge=2, le=30, description="Upper bound for requested scene counts")

    # ==========================================================================
    # AWS S3 / Bedrock
    # ==========================================================================
    aws_access_key_id: str = Field(default="", description="AWS Access Key ID")
    aws_secret_access_key: str = Field(default="", description="AWS Secret Key")
    aws_region: str = Field(default="us-east-1", description="AWS Region")
    s3_bucket_name: str = Field(default="", description="S3 Bucket Name")

    # ==========================================================================
    # ElevenLabs
    # ==========================================================================
    elevenlabs_api_key: str = Field(default="", description="ElevenLabs API Key")
    default_voice_id: str = Field(default="JBFqnCBsd6RMkjVDRZzb", description="Fallback narration voice")
    elevenlabs_model_id: str = Field(default="eleven_flash_v2_5", description="Narration model")
    narration_tail_padding: float = Field(default=1.0, ge=0.0, le=5.0, description="Seconds of silence after narration")

    # ==========================================================================
    # fal.ai
    # ==========================================================================
    fal_api_key: str = Field(default="", description="fal.ai API Key")
    fal_queue_url: str = Field(default="https://queue.fal.run", description="fal.ai queue base URL")
    provider_poll_interval: float = Field(default=10.0, gt=0, description="Seconds between provider status polls")
    provider_poll_timeout: float = Field(default=1200.0, gt=0, description="Give up on a provider request after this many seconds")
    music_model: str = Field(default="CassetteAI/music-generator", description="fal.ai music endpoint")
    enable_background_music: bool = Field(default=True, description="Generate and mix background music")

    # ==========================================================================
    # Queue Settings
    # ==========================================================================
    queue_name: str = Field(default="video-processing", description="Durable queue name")
    job_worker_concurrency: int = Field(default=2, ge=1, le=16, description="Concurrent pipeline workers")
    job_max_attempts: int = Field(default=3, ge=1, le=10, description="Deliveries per job before dead-lettering")
    job_backoff_base_seconds: float = Field(default=10.0, ge=0, description="Delay after the first failed attempt")
    job_backoff_multiplier: float = Field(default=2.0, ge=1, description="Exponential backoff factor")
    queue_poll_interval: float = Field(default=1.0, gt=0, description="Idle worker poll interval")
    queue_remove_on_complete: bool = Field(default=False, description="Delete queue entries on success")
    queue_remove_on_fail: bool = Field(default=False, description="Delete queue entries on exhaustion")

    # ==========================================================================
    # Rendering Settings
    # ==========================================================================
    output_fps: int = Field(default=24, ge=1, le=60)
    transition_type: str = Field(default="fade", description="xfade transition name")
    transition_duration: float = Field(default=1.0, ge=0.0, le=5.0)
    music_volume: float = Field(default=0.3, ge=0.0, le=2.0)
    voice_volume: float = Field(default=1.0, ge=0.0, le=2.0)
    caption_font_size: int = Field(default=54, ge=8, le=200)
    caption_color: str = Field(default="#FFD32C")
    caption_outline_color: str = Field(default="black")
    caption_border_width: int = Field(default=5, ge=0, le=20)
    caption_font_path: str = Field(default="", description="TTF font for captions (ffmpeg default when empty)")
    caption_batch_size: int = Field(default=20, ge=1, le=500, description="Words per subtitle pass")
    thumbnail_timestamp: float = Field(default=1.0, ge=0.0)
    scene_concurrency: int = Field(default=4, ge=1, le=16, description="Concurrent scene generations per job")
    persist_partial_output: bool = Field(default=False, description="Upload the last good video when a late step fails")

    # ==========================================================================
    # Security
    # ==========================================================================
    api_key: str = Field(default="", description="Optional API key for /api routes")
    cors_allowed_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:8000",
            "http://127.0.0.1:8000"
        ],
        description="Allowed CORS origins"
    )

    # ==========================================================================
    # Paths
    # ==========================================================================
    temp_dir: str = Field(default="temp", description="Per-job scratch directories")
    data_dir: str = Field(default="data", description="Queue and project database directory")

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
