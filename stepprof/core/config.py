from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Union


class Settings(BaseSettings):
    APP_NAME: str = "stepprof"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "dev"  # dev | staging | prod

    # Profiler defaults
    PROFILER_ENABLED: bool = True
    PROFILER_TRIVIAL_THRESHOLD: float = 0.75
    PROFILER_SHOW_DEPTH: int = -1  # -1 renders the whole tree
    PROFILER_DEFAULT_STEP: str = "Profiler Default Top Level"
    PROFILER_CALLSTACK_LIMIT: int = 25
    PROFILER_LOG_REPORTS: bool = True
    PROFILER_RESPONSE_HEADERS: bool = True

    # Logging configuration
    LOG_LEVEL: str = "INFO"
    LOG_TARGETS: Union[str, List[str]] = ["console"]  # accepts both str or list
    LOG_DIR: str = "logs"
    LOG_FILE_PATH: str = "logs/stepprof.log"
    LOG_RETENTION_DAYS: int = 7

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Comma-separated value parser
    @field_validator("LOG_TARGETS", mode="before")
    def parse_log_targets(cls, v):
        if isinstance(v, str):
            return [x.strip() for x in v.split(",") if x.strip()]
        elif isinstance(v, list):
            return v
        return ["console"]  # default fallback

    @field_validator("PROFILER_TRIVIAL_THRESHOLD")
    def check_trivial_threshold(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError("PROFILER_TRIVIAL_THRESHOLD must be between 0 and 1")
        return v

    @field_validator("PROFILER_CALLSTACK_LIMIT")
    def check_callstack_limit(cls, v):
        if v < 0:
            raise ValueError("PROFILER_CALLSTACK_LIMIT must be >= 0")
        return v


settings = Settings()
