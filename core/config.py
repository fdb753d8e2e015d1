"""Crawler configuration.

Settings come from code, from a YAML file (load_config) or from the CLI; the
crawler only ever sees the resulting CrawlerConfig value object.
"""
import logging
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict

import yaml

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_THREADS = 10
DEFAULT_ASSET_THREADS = 4
DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class CrawlerConfig:
    threads: int = DEFAULT_THREADS  # concurrent domain fetches
    asset_threads: int = DEFAULT_ASSET_THREADS  # concurrent asset fetches, per domain
    assets: bool = False  # also fetch css/js/images of each page
    no_remote: bool = False  # skip assets/domains that resolve off the configured IPs
    allow_insecure: bool = False  # skip certificate chain and hostname verification
    delay: float = 0.0  # seconds to sleep before each domain is crawled
    timeout: float = DEFAULT_TIMEOUT  # seconds for one GET including redirects

    def validate(self) -> "CrawlerConfig":
        """Raise ConfigurationError if any setting is unusable; returns self."""
        for name in ("threads", "asset_threads"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}", details={name: value})
        if not isinstance(self.delay, (int, float)) or self.delay < 0:
            raise ConfigurationError(f"delay must be >= 0, got {self.delay!r}", details={"delay": self.delay})
        if not isinstance(self.timeout, (int, float)) or self.timeout <= 0:
            raise ConfigurationError(f"timeout must be > 0, got {self.timeout!r}", details={"timeout": self.timeout})
        return self

    def merged(self, **overrides: Any) -> "CrawlerConfig":
        """Copy with the given settings replaced; None values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(path: str) -> CrawlerConfig:
    """
    Loads crawler settings from a YAML mapping, e.g.:

        threads: 20
        assets: true
        delay: 0.5

    Missing keys keep their defaults. Unknown keys are rejected.
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"unable to read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in config file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")

    known = {f.name for f in fields(CrawlerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"unknown config keys in {path}: {', '.join(unknown)}")

    config = CrawlerConfig(**data).validate()
    logger.debug(f"loaded config from {path}: {config.to_dict()}")
    return config
