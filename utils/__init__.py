"""Shared utilities for the backend."""
from utils.case import (
    coalesce,
    dict_keys_to_camel,
    dict_keys_to_snake,
    normalize_provider_payload,
    to_camel_key,
    to_snake_key,
)
from utils.identifiers import (
    application_number_prefix,
    new_access_token,
    new_application_number,
    new_client_reference_id,
    new_id,
    new_reference,
)
from utils.money import money

__all__ = [
    "to_camel_key",
    "to_snake_key",
    "dict_keys_to_camel",
    "dict_keys_to_snake",
    "normalize_provider_payload",
    "coalesce",
    "new_id",
    "new_access_token",
    "application_number_prefix",
    "new_application_number",
    "new_client_reference_id",
    "new_reference",
    "money",
]
