from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from care_allocation.policy import AllocationPolicy
from care_allocation.variants import VARIANTS, variant_policy


@dataclass(frozen=True)
class RuntimeConfig:
    artifact_root: Path
    default_profile: str


@dataclass(frozen=True)
class AllocationProfile:
    name: str
    variant: str
    policy: AllocationPolicy
    description: str = ""


def load_env(dotenv_path: str | Path | None = None) -> None:
    path = Path(dotenv_path) if dotenv_path else None
    if path and path.exists():
        load_dotenv(path)
        return
    load_dotenv()


def runtime_config() -> RuntimeConfig:
    artifact_root = Path(os.getenv("CARESHIFT_ARTIFACT_DIR", "./artifacts")).expanduser().resolve()
    default_profile = os.getenv("CARESHIFT_DEFAULT_PROFILE", "default")
    artifact_root.mkdir(parents=True, exist_ok=True)
    return RuntimeConfig(artifact_root=artifact_root, default_profile=default_profile)


def load_allocation_profiles(profile_file: Path | None = None) -> dict[str, Any]:
    if profile_file is None:
        profile_file = Path(__file__).resolve().parent.parent / "config" / "allocation_profiles.json"
    if not profile_file.exists():
        return {}
    with profile_file.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def get_profile(name: str, profiles: dict[str, Any] | None = None) -> AllocationProfile:
    """Resolve a named profile to a variant plus policy.

    An empty profile table still serves "default" as the simple variant so
    the engine runs without a config file.
    """
    if profiles is None:
        profiles = load_allocation_profiles()
    if name not in profiles:
        if name == "default":
            return AllocationProfile(name="default", variant="simple", policy=variant_policy("simple"))
        available = list(profiles.keys())
        raise ValueError(f"Profile '{name}' not found. Available: {available}")

    raw = profiles[name]
    variant = str(raw.get("variant") or "simple")
    if variant not in VARIANTS:
        raise ValueError(f"Profile '{name}' uses unknown variant {variant!r}")
    return AllocationProfile(
        name=name,
        variant=variant,
        policy=variant_policy(variant, raw.get("policy") or {}),
        description=str(raw.get("description") or ""),
    )
