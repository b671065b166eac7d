from __future__ import annotations
import functools
import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

from kickoff.errors import ConfigError

load_dotenv()

def _get(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name, default)
    return v if v not in ("", None) else default

def _int(name: str, default: int) -> int:
    raw = _get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None

def _float(name: str, default: float) -> float:
    raw = _get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None

def _bool(name: str, default: bool) -> bool:
    raw = _get(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("false", "0", "no", "off")


@dataclass(frozen=True)
class JobPolicy:
    """Retry/timeout ceilings for one scheduled job."""
    retries: int
    retry_delay: float
    timeout: float


# name -> (attempts, delay seconds, timeout seconds)
_JOB_DEFAULTS: dict[str, tuple[int, float, float]] = {
    "match_predictions": (2, 10.0, 7200.0),
    "upcoming_predictions_24h": (2, 10.0, 3600.0),
    "upcoming_predictions_7d": (2, 10.0, 7200.0),
    "placeholder_refresh": (2, 10.0, 3600.0),
    "team_stats_refresh": (2, 10.0, 10800.0),
    "match_result_processor": (2, 5.0, 300.0),
    "prediction_stats_guard": (1, 10.0, 180.0),
    "finished_match_cleanup": (2, 10.0, 1800.0),
    "cron_execution_cleanup": (2, 10.0, 1800.0),
}


@dataclass(frozen=True)
class Settings:
    db_path: str
    api_football_key: str | None
    api_football_base: str

    simulations: int
    cache_ttl: int
    cache_enabled: bool
    cache_backend: str
    cache_path: str
    redis_url: str

    lambda3: float
    rho: float
    model_version: str
    team_stats_refresh_hours: int

    alert_emails: tuple[str, ...]
    smtp_host: str
    smtp_port: int
    smtp_user: str | None
    smtp_password: str | None
    smtp_from: str | None
    send_success_notifications: bool

    cron_retention_days: int
    match_retention_days: int
    jobs: dict[str, JobPolicy] = field(default_factory=dict)

    def job_policy(self, name: str) -> JobPolicy:
        try:
            return self.jobs[name]
        except KeyError:
            return JobPolicy(retries=1, retry_delay=0.0, timeout=300.0)

    def __repr__(self) -> str:
        def _mask(v: str | None) -> str:
            if not v:
                return repr(v)
            return repr(v[:4] + "***") if len(v) > 4 else repr("***")
        fields = ", ".join(
            f"{f}={_mask(getattr(self, f)) if 'key' in f.lower() or 'password' in f.lower() else repr(getattr(self, f))}"
            for f in self.__dataclass_fields__
        )
        return f"Settings({fields})"

def _job_policies() -> dict[str, JobPolicy]:
    out = {}
    for name, (retries, delay, timeout) in _JOB_DEFAULTS.items():
        env = name.upper()
        out[name] = JobPolicy(
            retries=max(1, _int(f"JOB_{env}_RETRIES", retries)),
            retry_delay=_float(f"JOB_{env}_RETRY_DELAY", delay),
            timeout=_float(f"JOB_{env}_TIMEOUT", timeout),
        )
    return out

@functools.lru_cache(maxsize=1)
def settings() -> Settings:
    emails = (_get("ALERT_EMAILS", "") or "").split(",")
    emails = tuple(e.strip() for e in emails if e.strip())

    backend = (_get("CACHE_BACKEND", "sqlite") or "sqlite").strip().lower()
    if backend not in ("sqlite", "redis", "none"):
        raise ConfigError(f"CACHE_BACKEND must be sqlite, redis or none, got {backend!r}")

    simulations = _int("MATCH_PREDICTION_SIMULATIONS", 100_000)
    if simulations <= 0:
        raise ConfigError("MATCH_PREDICTION_SIMULATIONS must be positive")

    return Settings(
        db_path=_get("DB_PATH", "./data/kickoff.duckdb") or "./data/kickoff.duckdb",
        api_football_key=_get("API_FOOTBALL_KEY"),
        api_football_base=_get("API_FOOTBALL_BASE", "https://v3.football.api-sports.io") or "https://v3.football.api-sports.io",
        simulations=simulations,
        cache_ttl=_int("MATCH_PREDICTION_CACHE_TTL", 3600),
        cache_enabled=_bool("CACHE_ENABLED", True) and _bool("REDIS_ENABLED", True),
        cache_backend=backend,
        cache_path=_get("CACHE_PATH", "./data/cache.db") or "./data/cache.db",
        redis_url=_get("REDIS_URL", "redis://localhost:6379") or "redis://localhost:6379",
        lambda3=_float("LAMBDA3", 0.08),
        rho=_float("DIXON_COLES_RHO", 0.03),
        model_version=_get("MODEL_VERSION", "2.0.0") or "2.0.0",
        team_stats_refresh_hours=_int("TEAM_STATS_REFRESH_HOURS", 0),
        alert_emails=emails,
        smtp_host=_get("SMTP_HOST", "smtp.gmail.com") or "smtp.gmail.com",
        smtp_port=_int("SMTP_PORT", 465),
        smtp_user=_get("SMTP_USER"),
        smtp_password=_get("SMTP_PASS"),
        smtp_from=_get("SMTP_FROM") or _get("SMTP_USER"),
        send_success_notifications=_bool("SEND_SUCCESS_NOTIFICATIONS", False),
        cron_retention_days=_int("CRON_RETENTION_DAYS", 30),
        match_retention_days=_int("MATCH_RETENTION_DAYS", 1),
        jobs=_job_policies(),
    )
