from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping


class Region(str, Enum):
    AU = "AU"
    UK = "UK"
    USA = "USA"

    @classmethod
    def parse(cls, value: str | None) -> "Region | None":
        candidate = (value or "").strip().upper()
        for region in cls:
            if region.value == candidate:
                return region
        return None


REGION_DISPLAY_NAMES = {
    Region.AU: "Australia",
    Region.UK: "United Kingdom",
    Region.USA: "United States",
}

DEFAULT_REGION = Region.USA

ENDPOINT_SCHEMES = ("sqlite:///", "http://", "https://")


class RegionConfigError(Exception):
    pass


@dataclass(frozen=True)
class RegionConfig:
    region: Region
    url: str
    anon_key: str

    @property
    def complete(self) -> bool:
        return bool(self.url.strip()) and bool(self.anon_key.strip())

    @property
    def supported_endpoint(self) -> bool:
        return self.url.startswith(ENDPOINT_SCHEMES)


def display_name(region: Region) -> str:
    return REGION_DISPLAY_NAMES.get(region, region.value)


def load_region_configs(env: Mapping[str, str] | None = None) -> dict[Region, RegionConfig]:
    source = os.environ if env is None else env
    configs: dict[Region, RegionConfig] = {}
    for region in Region:
        configs[region] = RegionConfig(
            region=region,
            url=(source.get(f"SUPABASE_{region.value}_URL") or "").strip().rstrip("/"),
            anon_key=(source.get(f"SUPABASE_{region.value}_ANON_KEY") or "").strip(),
        )
    return configs


def require_complete(configs: Mapping[Region, RegionConfig], region: Region) -> RegionConfig:
    config = configs.get(region)
    if config is None or not config.complete:
        raise RegionConfigError(f"Record store configuration for region {region.value} is incomplete")
    if not config.supported_endpoint:
        raise RegionConfigError(
            f"Record store endpoint for region {region.value} has an unsupported scheme: {config.url}"
        )
    return config
