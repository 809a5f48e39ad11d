"""Configuration management for the functions delegate."""

from functools import lru_cache

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Delegate configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="FUNCTIONS_DELEGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Virtual environment layout
    venv_dir: str = Field("venv", description="Virtual environment directory inside the source dir")
    python_executable: str = Field("python", description="Python binary resolved after activation")

    # Functions framework
    framework_module: str = Field("firebase_functions", description="Importable functions framework package")
    codegen_file: str = Field("codegen.py", description="Code generator inside the framework package")
    entry_file: str = Field("main.py", description="User entry file passed to the code generator")

    # Generated admin entrypoint
    admin_folder: str = Field("functions_admin", description="Generated folder under the venv directory")
    admin_module: str = Field("admin", description="Generated module name")
    admin_app: str = Field("admin", description="WSGI application attribute in the generated module")
    app_server: str = Field("gunicorn", description="Application server binary")
    admin_host: str = Field("localhost", description="Host the admin server binds and is queried on")

    # Discovery
    manifest_file: str = Field("functions.yaml", description="Declarative discovery file")
    discovery_start_port: int = Field(8081, description="Preferred admin server port")
    discovery_timeout_seconds: float = Field(10.0, description="Introspection deadline")
    discovery_poll_interval_seconds: float = Field(0.2, description="Introspection retry interval")

    # Shutdown
    shutdown_grace_seconds: float = Field(10.0, description="Grace window before SIGKILL")
    quit_request_timeout_seconds: float = Field(2.0, description="Timeout for the quit request")

    # Observability
    log_level: str = Field("INFO")
    log_format: str = Field("console")

    @validator("discovery_start_port")
    def validate_port(cls, v: int) -> int:
        """Keep the preferred port inside the TCP range."""
        if v < 1 or v > 65535:
            raise ValueError(f"Port must be between 1 and 65535, got: {v}")
        return v

    @validator("shutdown_grace_seconds", "discovery_timeout_seconds")
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @property
    def admin_target(self) -> str:
        """Application server target, e.g. ``functions_admin.admin:admin``."""
        return f"{self.admin_folder}.{self.admin_module}:{self.admin_app}"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
