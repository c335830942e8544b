import os
from typing import Optional
from dotenv import load_dotenv

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()

DEFAULT_DB_URI = "sqlite:///./kexec.db"


class Settings(BaseSettings):
    """
    Application settings for the function build-and-invoke platform.

    Constructed once at process start and handed to the platform context;
    nothing else in the package reads the environment directly.
    """
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # API settings
    PROJECT_NAME: str = "Function Build-and-Invoke Platform"
    LOG_LEVEL: str = "INFO"

    # Authentication settings
    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me-kexec-development-secret")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7 days

    # Database settings
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL", DEFAULT_DB_URI)

    # Docker settings
    DOCKER_HOST: Optional[str] = None
    DOCKER_TLS_VERIFY: bool = False
    DOCKER_CERT_PATH: Optional[str] = None
    DOCKER_API_VERSION: str = "auto"
    DOCKER_TIMEOUT_SECONDS: int = 300

    # Registry settings
    DOCKER_REGISTRY: str = "localhost:5000"
    REGISTRY_USERNAME: Optional[str] = None
    REGISTRY_PASSWORD: Optional[str] = None
    REGISTRY_PUSH_MODE: str = "sdk"  # sdk | cli

    # Build context staging
    IMAGEBUILD_CONTEXT_ROOT: str = "/tmp/faas-imagebuild-context"
    KEEP_BUILD_CONTEXT: bool = False

    # Kubernetes settings
    KUBE_CONFIG_PATH: Optional[str] = None
    KUBE_IN_CLUSTER: bool = False
    NAMESPACE_SUFFIX: str = "serverless"
    JOB_PARAMS_ENV: str = "SERVERLESS_PARAMS"
    JOB_TTL_SECONDS_AFTER_FINISHED: Optional[int] = 600

    # Invocation wait
    INVOKE_TIMEOUT_SECONDS: float = 30.0
    MAX_INVOKE_TIMEOUT_SECONDS: float = 300.0  # upper bound on a caller-supplied timeout
    POLL_INTERVAL_SECONDS: float = 1.0
    MULTI_POD_LOG_POLICY: str = "aggregate"  # aggregate | latest

    # Retry policy for transient engine/registry/cluster failures
    RETRY_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: float = 0.5

    # Invocation log cache
    REDIS_URL: Optional[str] = None
    LOG_CACHE_TTL_SECONDS: int = 3600

    @field_validator("REGISTRY_PUSH_MODE")
    @classmethod
    def _check_push_mode(cls, value: str) -> str:
        if value not in ("sdk", "cli"):
            raise ValueError(f"REGISTRY_PUSH_MODE must be 'sdk' or 'cli', got {value!r}")
        return value

    @field_validator("MULTI_POD_LOG_POLICY")
    @classmethod
    def _check_log_policy(cls, value: str) -> str:
        if value not in ("aggregate", "latest"):
            raise ValueError(f"MULTI_POD_LOG_POLICY must be 'aggregate' or 'latest', got {value!r}")
        return value

    @field_validator("DOCKER_REGISTRY")
    @classmethod
    def _strip_registry(cls, value: str) -> str:
        return value.rstrip("/")


def get_settings() -> Settings:
    return Settings()
