"""Failure kinds and exceptions shared by stores, services and the server.

Expected outcomes (missing entity, sold out, bad token, duplicate) travel as
`Failure` values next to the result, e.g. ``purchase, err = await ...``.
Exceptions are reserved for misconfiguration and storage faults.
"""
from enum import Enum


class Failure(str, Enum):
    NOT_FOUND = "not_found"
    OUT_OF_STOCK = "out_of_stock"
    INVALID = "invalid"
    ALREADY_EXISTS = "already_exists"


class ConfigError(RuntimeError):
    pass


class SigningKeyError(ConfigError):
    """The token signing key is missing or unusable. Fatal at startup."""


class StorageError(RuntimeError):
    """Opaque wrapper around database / redis failures."""
