"""Boss catalog loading.

The catalog is a pre-built YAML file listing every boss and its dedicated
drops. It is consumed read-only.

Example catalog.yaml::

    bosses:
      - name: Splaszone
        drops: [Lead Balloon, Fireworks, Jelly]
        tracker_id: splaszone
"""

import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from vaultdrops.common.config import ConfigError
from vaultdrops.common.models import Boss

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to "-", trim dashes.

    Example:
        >>> slugify("The Oppressor")
        'the-oppressor'
    """
    return _NON_ALNUM.sub("-", str(name).lower()).strip("-")


def load_catalog(path: str | Path = "catalog.yaml") -> list[Boss]:
    """Load the boss catalog from a YAML file.

    Bosses without an explicit slug get slugify(name).

    Raises:
        ConfigError: If the file is missing, unparsable or invalid
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"{str(path)!r} not found. Please provide a boss catalog.") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse catalog {str(path)!r}: {e}") from e

    if data is None:
        return []
    if not isinstance(data, dict):
        raise ConfigError(f"Catalog {str(path)!r} must be a mapping with a 'bosses' key")

    bosses: list[Boss] = []
    seen: set[str] = set()
    for entry in data.get("bosses", []) or []:
        if not isinstance(entry, dict):
            raise ConfigError(f"Invalid boss entry in catalog: {entry!r}")
        entry = dict(entry)
        entry.setdefault("slug", slugify(entry.get("name", "")))
        try:
            boss = Boss(**entry)
        except ValidationError as e:
            raise ConfigError(f"Invalid boss entry {entry.get('name')!r}: {e}") from e
        if boss.slug in seen:
            raise ConfigError(f"Duplicate boss slug in catalog: {boss.slug!r}")
        seen.add(boss.slug)
        bosses.append(boss)
    return bosses


def find_boss(bosses: list[Boss], slug: str) -> Boss | None:
    return next((b for b in bosses if b.slug == slug), None)
