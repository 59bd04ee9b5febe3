"""
Saver Configuration - Defaults for frame buffering and ffmpeg encoding

Settings are read from ``configs/defaults.yaml``. A missing file falls back
to the built-in defaults below.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent / "configs"

# Appended to the destination name to build the temporary image folder
TEMP_SUFFIX = "_vs7c1e0b94d2f8a63e5b1d09fa4c7e82b6"


@dataclass
class EncodingDefaults:
    """ffmpeg settings for the image sequence to video step"""
    codec: str = "libx264"
    crf: int = 23
    preset: str = "medium"
    pixel_format: str = "yuv420p"


@dataclass
class SaverSettings:
    """Settings shared by every VideoSaver session"""
    image_format: str = "jpg"
    image_quality: int = 95
    image_suffix: str = "_rendered"
    zero_pad: int = 12
    temp_suffix: str = TEMP_SUFFIX
    pipeline_extensions: List[str] = field(default_factory=lambda: ["mp4"])
    ffmpeg_path: Optional[str] = None
    encoding: EncodingDefaults = field(default_factory=EncodingDefaults)

    def __post_init__(self):
        if self.zero_pad <= 0:
            raise ConfigurationError(
                f"zero_pad must be positive, got {self.zero_pad}",
                hint="Set saver.zero_pad to a positive integer in defaults.yaml."
            )
        if not self.temp_suffix:
            raise ConfigurationError(
                "temp_suffix cannot be empty",
                hint="An empty suffix would make the temporary folder collide with user files."
            )
        self.pipeline_extensions = [ext.lower().lstrip('.') for ext in self.pipeline_extensions]


def _apply(cls, values: Dict[str, Any], section: str):
    """Build a dataclass from a YAML mapping, skipping unknown keys"""
    known = {f.name: f for f in fields(cls)}
    kwargs = {}
    for key, value in values.items():
        if key not in known or key == 'encoding':
            logger.warning(f"Ignoring unknown setting '{section}.{key}'")
            continue
        kwargs[key] = value
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ConfigurationError(
            f"Invalid '{section}' settings: {e}",
            hint="Check the types of the values in defaults.yaml."
        )


def load_settings(config_dir: Optional[Union[str, Path]] = None) -> SaverSettings:
    """
    Load saver settings from YAML.

    Args:
        config_dir: Directory containing defaults.yaml (package configs/ if None)

    Returns:
        SaverSettings object
    """
    config_dir = Path(config_dir) if config_dir is not None else DEFAULT_CONFIG_DIR
    defaults_path = config_dir / "defaults.yaml"

    data: Dict[str, Any] = {}
    if defaults_path.exists():
        try:
            with open(defaults_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Could not parse settings file: {e}",
                path=str(defaults_path),
                hint="Fix the YAML syntax or delete the file to use built-in defaults."
            )
    else:
        logger.debug(f"No settings file at {defaults_path}, using built-in defaults")

    if not isinstance(data, dict):
        raise ConfigurationError(
            "Settings file must contain a mapping",
            path=str(defaults_path),
            hint="Expected top-level 'saver:' and 'encoding:' sections."
        )

    encoding = _apply(EncodingDefaults, data.get('encoding') or {}, 'encoding')
    settings = _apply(SaverSettings, data.get('saver') or {}, 'saver')
    settings.encoding = encoding
    return settings
