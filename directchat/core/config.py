import os
from pathlib import Path

from pydantic import ConfigDict, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    SECRET: str
    DATABASE_URL: str
    ALGORITHM: str = "HS256"
    RUN_MIGRATIONS: bool = False

    # Object storage for chat images
    MEDIA_ROOT: str = "./data/chat-images"
    MEDIA_BASE_URL: str = "/media/chat-images"
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024

    # History windowing
    HISTORY_PAGE_SIZE: int = 50
    HISTORY_MAX_PAGE_SIZE: int = 200

    # Late attachment resolution (seconds)
    ATTACHMENT_RESOLVE_ATTEMPTS: int = 6
    ATTACHMENT_RESOLVE_INITIAL_DELAY: float = 0.1
    ATTACHMENT_RESOLVE_MAX_DELAY: float = 2.0
    ATTACHMENT_RESOLVE_TIMEOUT: float = 10.0

    # Retries for transient backend failures (seconds)
    SEND_RETRY_ATTEMPTS: int = 3
    RETRY_INITIAL_DELAY: float = 0.5
    RETRY_MAX_DELAY: float = 5.0

    # Optimistic entries match an echo sent within this window
    DEDUP_WINDOW_SECONDS: float = 30.0

    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8")

    @classmethod
    def get_required_fields(cls) -> list[str]:
        """Get all required fields (those without default values)."""
        return [name for name, field in cls.model_fields.items() if field.is_required()]

    def __init__(self, **kwargs):
        try:
            super().__init__(**kwargs)
        except ValidationError as e:
            env_file = Path(".env")
            required_fields = self.get_required_fields()

            missing_fields = []
            for field in required_fields:
                if not os.getenv(field):
                    missing_fields.append(field)

            if missing_fields:
                fields_str = "\n".join(f"- {field}" for field in missing_fields)
                example_env = "\n".join(
                    f"{field}=your_{field.lower()}_here" for field in missing_fields
                )

                if not env_file.exists():
                    error_msg = (
                        f"\n\nError: Missing required environment variables!"
                        f"\nMissing variables: {fields_str}"
                        f"\n\nFor local development, create a .env file with:"
                        f"\n{example_env}"
                    )
                else:
                    error_msg = (
                        f"\n\nError: Missing required environment variables!"
                        f"\nMissing variables: {fields_str}"
                        f"\n\nPlease add these to your .env file or set as environment variables."
                    )

                raise ValueError(error_msg) from e
            else:
                raise


settings = Settings()
