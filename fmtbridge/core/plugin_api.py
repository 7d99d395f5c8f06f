# fmtbridge/core/plugin_api.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import json
import re
from enum import IntEnum
from typing import Dict, List, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, TypeAdapter, ValidationError

PLUGIN_SCHEMA_VERSION = 3

# Changing any of these names or arities breaks every compiled plugin.
HOST_MODULE = "dprint"
HOST_CLEAR_BYTES = "host_clear_bytes"
HOST_READ_BUFFER = "host_read_buffer"
HOST_WRITE_BUFFER = "host_write_buffer"
HOST_TAKE_OVERRIDE_CONFIG = "host_take_override_config"
HOST_TAKE_FILE_PATH = "host_take_file_path"
HOST_FORMAT = "host_format"
HOST_GET_FORMATTED_TEXT = "host_get_formatted_text"
HOST_GET_ERROR_TEXT = "host_get_error_text"

PLUGIN_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]{1,63}$")

ConfigKeyValue = Union[StrictBool, StrictInt, StrictStr]
ConfigKeyMap = Dict[str, Union[bool, int, str]]

_CONFIG_KEY_MAP = TypeAdapter(Dict[str, ConfigKeyValue])


class FormatStatus(IntEnum):
    NO_CHANGE = 0
    CHANGE = 1
    ERROR = 2


def parse_config_key_map(raw: bytes) -> ConfigKeyMap:
    """Parse an override config payload; anything malformed yields an empty map."""
    if not raw:
        return {}
    try:
        return _CONFIG_KEY_MAP.validate_python(json.loads(raw))
    except (ValueError, ValidationError):
        return {}


def serialize_config_key_map(config: Optional[ConfigKeyMap]) -> bytes:
    return json.dumps(config or {}, separators=(",", ":")).encode("utf-8")


class PluginInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    version: str = "0.0.0"
    config_key: str = Field(alias="configKey")
    file_extensions: List[str] = Field(default_factory=list, alias="fileExtensions")
    file_names: List[str] = Field(default_factory=list, alias="fileNames")
    help_url: str = Field(default="", alias="helpUrl")
    config_schema_url: str = Field(default="", alias="configSchemaUrl")
    update_url: Optional[str] = Field(default=None, alias="updateUrl")

    def matches(self, file_name: str, extension: str) -> bool:
        if file_name in self.file_names:
            return True
        ext = extension.lower().lstrip(".")
        return bool(ext) and ext in (e.lower().lstrip(".") for e in self.file_extensions)


class ConfigDiagnostic(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    property_name: str = Field(alias="propertyName")
    message: str

    def __str__(self):
        return f"{self.message} ({self.property_name})"


@runtime_checkable
class PluginPoolProtocol(Protocol):
    def format_with_plugin_pool(
        self,
        caller_plugin_name: str,
        file_path: str,
        file_text: str,
        override_config: ConfigKeyMap,
    ) -> Optional[str]:
        ...
