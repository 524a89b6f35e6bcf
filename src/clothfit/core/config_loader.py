"""JSON config file loading utilities."""

import json
import logging
from pathlib import Path
from typing import Any, Union

from clothfit.constants import CONFIG_DIR
from clothfit.skeleton.vocabulary import DEFAULT_VOCABULARY, MatchVocabulary

logger = logging.getLogger(__name__)


def load_json(path: Path) -> Any:
    """Load and return parsed JSON from a file."""
    with open(path) as f:
        return json.load(f)


def load_config(name: str) -> Any:
    """Load a config file from the bundled config/ directory."""
    return load_json(CONFIG_DIR / name)


def load_vocabulary(source: Union[str, Path]) -> MatchVocabulary:
    """Load a matching vocabulary from JSON.

    ``source`` is a file path, or the name of a bundled config file
    (e.g. ``"mixamo_vocabulary.json"``).  Keys missing from the file keep
    their default values, so a file may override only e.g. ``aliases`` or
    ``spatial_radius``.
    """
    path = Path(source)
    data = load_json(path) if path.exists() else load_config(str(source))
    if not isinstance(data, dict):
        raise ValueError(f"Vocabulary file {source} must contain a JSON object")
    vocab = DEFAULT_VOCABULARY.replace(**data)
    logger.info("Loaded vocabulary from %s (%d canonical names)",
                source, len(vocab.canonical_names))
    return vocab
