"""
Named custom decoders for provider-specific value encodings.

Decoders are plain callables ``str -> str`` keyed by name. A decoder set is
passed explicitly to the TransformEngine at construction time.
"""

from typing import Callable, Mapping

Decoder = Callable[[str], str]

ALLANIME_SOURCE_DECODER = "AllAnimeSourceDecoder"


def decode_dash_hex(value: str) -> str:
    """
    Decode a "dash-prefixed hex" value.

    ``-68747470...`` decodes the hex after the dash into UTF-8 text. Any
    other value, or a value that fails to decode, is returned unchanged.
    """
    if not value or not value.startswith("-"):
        return value
    try:
        return bytes.fromhex(value[1:]).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return value


def default_decoders() -> dict[str, Decoder]:
    """The decoders known out of the box."""
    return {ALLANIME_SOURCE_DECODER: decode_dash_hex}


def merge_decoders(*decoder_sets: Mapping[str, Decoder]) -> dict[str, Decoder]:
    """
    Merge decoder sets; later sets win on name clashes.

    Names are compared case-insensitively, and the spelling of the winning
    set is kept.
    """
    merged: dict[str, Decoder] = {}
    for decoders in decoder_sets:
        for name, decoder in decoders.items():
            for existing in [key for key in merged if key.lower() == name.lower()]:
                del merged[existing]
            merged[name] = decoder
    return merged

