from __future__ import annotations

import re

from packaging.utils import canonicalize_name
from pydantic import BaseModel, ConfigDict, field_validator

# https://peps.python.org/pep-0508/#names
NAME_PATTERN = re.compile(r"^([A-Z0-9]|[A-Z0-9][A-Z0-9._-]*[A-Z0-9])$", re.IGNORECASE)
LOCATION_SEPARATOR = "://"


def is_valid_name(name: str) -> bool:
    return NAME_PATTERN.fullmatch(name) is not None


def canonical_name(name: str) -> str:
    """Return the PEP 503 normalized form used for links and family lookups."""
    return str(canonicalize_name(name))


def split_location(location: str) -> tuple[str, str]:
    scheme, separator, path = location.partition(LOCATION_SEPARATOR)
    if not separator:
        raise ValueError(f"location has no scheme: {location!r}")
    return scheme, path


class DTOBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class PackageMeta(DTOBase):
    name: str
    version: str
    location: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        if not is_valid_name(value):
            raise ValueError(f"invalid package name: {value!r}")
        return value

    @field_validator("version")
    @classmethod
    def validate_version(cls, value: str) -> str:
        if not value or any(char.isspace() for char in value) or "/" in value:
            raise ValueError(f"invalid package version: {value!r}")
        return value

    @field_validator("location")
    @classmethod
    def validate_location(cls, value: str) -> str:
        scheme, path = split_location(value)
        if not scheme or not path:
            raise ValueError(f"location must look like scheme://path: {value!r}")
        return value

    @property
    def key(self) -> tuple[str, str]:
        return self.name, self.version

    @property
    def scheme(self) -> str:
        return split_location(self.location)[0]

    @property
    def path(self) -> str:
        return split_location(self.location)[1]

    @property
    def filename(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]


class Package(DTOBase):
    meta: PackageMeta
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class IndexEntry(DTOBase):
    display_name: str
    link: str
