"""
Tree Grant Configuration

A tree grant gives the indexer access to a directory through an opaque
handle instead of a raw path (the equivalent of a folder picked in a
consent dialog).  Grants are loaded from ``<config_dir>/tree_grants.yaml``:

    grants:
      - id: camera
        path: /media/phone/DCIM
        name: Phone camera
      - id: scans
        path: ~/Scans

Each grant is exposed as ``content://picfinder.tree/tree/<id>``.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import yaml

logger = logging.getLogger(__name__)

GRANTS_FILENAME = "tree_grants.yaml"

_VALID_TREE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass
class TreeGrant:
    """A directory made available through a tree handle."""

    id: str
    path: str
    name: Optional[str] = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.id or not _VALID_TREE_ID.match(self.id):
            raise ValueError(
                f"Invalid tree id '{self.id}'. Use letters, digits, '.', '_' or '-'"
            )
        if not self.path:
            raise ValueError(f"path is required for tree grant '{self.id}'")

    @property
    def root(self) -> Path:
        """Granted directory (``~`` expanded, absolute)."""
        return Path(self.path).expanduser().absolute()

    @property
    def display_name(self) -> str:
        return self.name or self.id


def load_tree_grants(config_dir: Path) -> Dict[str, TreeGrant]:
    """
    Load tree grants from YAML.

    A missing file means no grants.  Invalid entries are logged and skipped
    so one typo does not disable every other grant.

    Args:
        config_dir: Directory containing ``tree_grants.yaml``

    Returns:
        Dict mapping tree id to TreeGrant
    """
    config_path = Path(config_dir) / GRANTS_FILENAME
    grants: Dict[str, TreeGrant] = {}

    if not config_path.exists():
        logger.debug(f"No tree grants at {config_path}")
        return grants

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse tree grants: {e}")
        return grants

    if not isinstance(data, dict) or "grants" not in data:
        logger.warning(f"Invalid tree grants file {config_path} (missing 'grants' key)")
        return grants

    for grant_data in data.get("grants") or []:
        try:
            grant = TreeGrant(**grant_data)
        except (TypeError, ValueError) as e:
            name = grant_data.get("id", "unknown") if isinstance(grant_data, dict) else "unknown"
            logger.error(f"Invalid tree grant: {name}: {e}")
            continue
        if grant.id in grants:
            logger.warning(f"Duplicate tree grant '{grant.id}', keeping the first one")
            continue
        grants[grant.id] = grant
        logger.info(f"Loaded tree grant: {grant.id} -> {grant.root}")

    return grants
