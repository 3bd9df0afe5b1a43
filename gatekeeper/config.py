from pydantic_settings import BaseSettings

from gatekeeper.services.window_store import LimiterConfig


class Settings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 5555
    cors_origins: str = "*"
    short_window_ms: int = 10_000
    short_window_max: int = 10
    long_window_ms: int = 60_000
    long_window_max: int = 60
    short_window_message: str = (
        "You reached the {max} request limit in {seconds} seconds"
    )
    long_window_message: str = (
        "You reached the {max} request limit in {minutes} minute(s)"
    )
    trust_forwarded_for: bool = False
    rate_limit_exempt_paths: str = "/health,/metrics"
    log_format: str = "text"
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def limiter_config(self) -> LimiterConfig:
        return LimiterConfig(
            short_window_ms=self.short_window_ms,
            short_window_max=self.short_window_max,
            long_window_ms=self.long_window_ms,
            long_window_max=self.long_window_max,
            short_window_message=self.short_window_message,
            long_window_message=self.long_window_message,
        )

    def exempt_paths(self) -> frozenset[str]:
        return frozenset(
            p.strip() for p in self.rate_limit_exempt_paths.split(",") if p.strip()
        )


settings = Settings()
