"""Ingestion layer.

This package contains the decoders that turn raw upstream text into the
flat key/value observations consumed by the state layer.
"""

from feedrouter.ingestion.sheet import decode_key_value_csv

__all__: list[str] = ["decode_key_value_csv"]
