"""Path validation and hardened XML decoding for untrusted inputs."""

from phonearchive.security.path import MAX_PATH_LENGTH, PathValidator
from phonearchive.security.xml import (
    DEFAULT_MAX_XML_SIZE,
    EntityNeutralizer,
    LimitedReader,
    iterparse_secure,
    parse_secure,
    secure_parser,
)

__all__ = [
    "DEFAULT_MAX_XML_SIZE",
    "EntityNeutralizer",
    "LimitedReader",
    "MAX_PATH_LENGTH",
    "PathValidator",
    "iterparse_secure",
    "parse_secure",
    "secure_parser",
]
