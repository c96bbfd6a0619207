from __future__ import annotations

import os
from pathlib import Path

ENV_VAR = "OPPTRACKER_DATA"


def default_data_dir(profile: str | None = None) -> Path:
    base = Path.home() / ".config" / "opptracker"
    return base / (profile or "default")


def resolve_data_dir(data_arg: str | None, profile: str | None) -> Path:
    if data_arg:
        return Path(data_arg).expanduser().resolve()
    env = os.environ.get(ENV_VAR)
    if env:
        return Path(env).expanduser().resolve()
    return default_data_dir(profile).expanduser().resolve()


def describe_source(data_arg: str | None, profile: str | None) -> str:
    if data_arg:
        return "because you passed --data"
    if os.environ.get(ENV_VAR):
        return f"because {ENV_VAR} is set"
    if profile:
        return f"because you used --profile {profile!r}"
    return "default XDG config location"
