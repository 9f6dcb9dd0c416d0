from __future__ import annotations

import os


def env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def env_bool(name: str, default: bool = False) -> bool:
    value = env(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


CLOCK_SKEW_SEC = int(env("TEEVERDICT_CLOCK_SKEW_SEC", "60"))
ADVISORY_WEIGHT = float(env("TEEVERDICT_ADVISORY_WEIGHT", "0.5"))
MAX_WORKERS = int(env("TEEVERDICT_MAX_WORKERS", "4"))
PARALLEL_CHECKS = env_bool("TEEVERDICT_PARALLEL_CHECKS", False)
