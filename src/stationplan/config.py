"""
Process settings for stationplan.

Uses environment variables with sensible defaults. Per-tournament settings
live in the tournament YAML file instead.
"""
import os
from dataclasses import replace

from stationplan.errors import ConfigError
from stationplan.schedule import Algorithm, SchedulingConfig


class EngineSettings:
    """Settings read from the environment when instantiated."""

    def __init__(self, environ=None):
        env = os.environ if environ is None else environ

        # Algorithm override for every run (empty = use the tournament file)
        self.ALGORITHM = env.get("STATIONPLAN_ALGORITHM") or None
        if self.ALGORITHM is not None and self.ALGORITHM not in {a.value for a in Algorithm}:
            raise ConfigError(f"Unknown STATIONPLAN_ALGORITHM: {self.ALGORITHM}")

        # Seed for the genetic search and CP-SAT (empty = the file's random_seed)
        self.SEED = _int_or_none(env.get("STATIONPLAN_SEED"), "STATIONPLAN_SEED")

        # CP-SAT time limit in seconds (empty = the file's timeout_seconds)
        timeout = env.get("STATIONPLAN_CSP_TIMEOUT")
        try:
            self.CSP_TIMEOUT = float(timeout) if timeout else None
        except ValueError as e:
            raise ConfigError(f"STATIONPLAN_CSP_TIMEOUT must be a number, got {timeout!r}") from e


def _int_or_none(value: str | None, name: str) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def get_settings() -> EngineSettings:
    """Get settings from the current environment."""
    return EngineSettings()


def print_config(settings: EngineSettings):
    """Print configuration for debugging."""
    print(f"\n{'='*60}")
    print(f"{type(settings).__name__} Configuration:")
    print(f"{'='*60}")
    for attr in dir(settings):
        if attr.isupper():
            value = getattr(settings, attr)
            print(f"  {attr:20} = {value}")
    print(f"{'='*60}\n")


def apply_settings(config: SchedulingConfig, settings: EngineSettings) -> SchedulingConfig:
    """Overlay environment settings on a tournament's run configuration."""
    solver = config.solver
    if settings.SEED is not None:
        solver = replace(solver, random_seed=settings.SEED)
    if settings.CSP_TIMEOUT is not None:
        solver = replace(solver, timeout_seconds=settings.CSP_TIMEOUT)
    config = replace(config, solver=solver)
    if settings.ALGORITHM is not None:
        config = replace(config, algorithm=Algorithm(settings.ALGORITHM))
    return config
