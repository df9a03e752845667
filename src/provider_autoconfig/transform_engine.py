"""
Field-path extraction and value transforms.

This module evaluates the small path language used by field mappings
(``$`` root, ``.name`` member access, ``[n]`` index access) against JSON
documents and applies the value transform table:
- none / parseJson: identity
- decodeBase64 / decodeHex: UTF-8 decode, original value on failure
- urlDecode
- prependHost: no-op for absolute URLs
- regexExtract: substitution, group 1, or whole match
- custom: named decoder from the injected decoder set

Unresolvable paths yield None for that field; unparseable documents yield
no records. Nothing in this module raises to its callers.
"""

import base64
import binascii
import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Mapping, Optional, Union
from urllib.parse import unquote

from .audit_logger import AuditLogger, ComponentLogging
from .decoders import Decoder, default_decoders, merge_decoders
from .enums import TransformType
from .provider_config import FieldMapping, TransformRule

PathSegment = Union[str, int]

_SEGMENT_RE = re.compile(r"(\w+)|\[(\d+)\]")

_MISSING = object()


@lru_cache(maxsize=1024)
def parse_path(path: str) -> tuple[PathSegment, ...]:
    """
    Split a path such as ``$.data.items[0].title`` into segments.

    Results are cached per distinct path string.
    """
    trimmed = path.strip().lstrip("$").lstrip(".")
    segments: list[PathSegment] = []
    for match in _SEGMENT_RE.finditer(trimmed):
        if match.group(1) is not None:
            segments.append(match.group(1))
        else:
            segments.append(int(match.group(2)))
    return tuple(segments)


def _resolve(element: Any, segments: tuple[PathSegment, ...]) -> Any:
    current = element
    for segment in segments:
        if isinstance(segment, int):
            if not isinstance(current, list) or segment >= len(current):
                return _MISSING
            current = current[segment]
        else:
            if not isinstance(current, dict) or segment not in current:
                return _MISSING
            current = current[segment]
    return current


def stringify(value: Any) -> Optional[str]:
    """Render an extracted JSON value as text (None for null)."""
    if value is None or value is _MISSING:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _load(document: Any) -> Any:
    if isinstance(document, (bytes, bytearray)):
        document = document.decode("utf-8", errors="replace")
    if isinstance(document, str):
        return json.loads(document)
    return document


# Closed target-field vocabulary understood by the runtime
_RECORD_FIELDS = {
    "id": "id",
    "title": "title",
    "synopsis": "synopsis",
    "coverimage": "cover_image",
    "detailpage": "detail_page",
    "number": "number",
    "url": "url",
    "quality": "quality",
    "provider": "provider",
    "page": "page",
}


@dataclass
class ExtractedRecord:
    """One extracted record; unknown target fields land in ``extras``."""

    id: Optional[str] = None
    title: Optional[str] = None
    synopsis: Optional[str] = None
    cover_image: Optional[str] = None
    detail_page: Optional[str] = None
    number: Optional[str] = None
    url: Optional[str] = None
    quality: Optional[str] = None
    provider: Optional[str] = None
    page: Optional[str] = None
    extras: dict[str, Optional[str]] = field(default_factory=dict)

    def set(self, target_field: str, value: Optional[str]) -> None:
        """Set a field; a None never replaces a value set by an earlier mapping."""
        attribute = _RECORD_FIELDS.get(target_field.lower())
        if attribute is None:
            if value is not None or target_field not in self.extras:
                self.extras[target_field] = value
            return
        if value is not None or getattr(self, attribute) is None:
            setattr(self, attribute, value)

    def get(self, target_field: str) -> Optional[str]:
        attribute = _RECORD_FIELDS.get(target_field.lower())
        if attribute is None:
            return self.extras.get(target_field)
        return getattr(self, attribute)


class TransformEngine(ComponentLogging):
    """
    Evaluates field mappings against response documents.

    Custom decoders are resolved from the mapping passed at construction;
    the built-in decoders are always available unless overridden by name.
    Decoder names are matched case-insensitively, like transform rule names.
    """

    COMPONENT = "TransformEngine"

    def __init__(
        self,
        decoders: Optional[Mapping[str, Decoder]] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._decoders = merge_decoders(default_decoders(), decoders or {})
        self._decoders_by_key = {name.lower(): decoder for name, decoder in self._decoders.items()}
        self._logger = logger

    @property
    def decoder_names(self) -> list[str]:
        return sorted(self._decoders)

    def has_decoder(self, name: str) -> bool:
        return name.lower() in self._decoders_by_key

    def extract_value(self, document: Any, path: str) -> Optional[str]:
        """
        Extract a single value from a document.

        Args:
            document: JSON text or already-parsed data
            path: Path expression, e.g. ``$.data.shows.edges[0]._id``

        Returns:
            The value as text, or None when the path does not resolve
        """
        try:
            root = _load(document)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        return stringify(_resolve(root, parse_path(path)))

    def extract_all(
        self,
        document: Any,
        mappings: list[FieldMapping],
        array_path: Optional[str] = None,
    ) -> list[ExtractedRecord]:
        """
        Extract one record per element of the array at ``array_path``.

        When the value at ``array_path`` (default: the root) is not an array,
        it yields exactly one record. A missing value yields no records.

        Args:
            document: JSON text or already-parsed data
            mappings: Field mappings evaluated against each element
            array_path: Optional path to the result array

        Returns:
            Extracted records; empty when the document cannot be parsed
        """
        try:
            root = _load(document)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._log_debug("Document is not valid JSON", {"error": str(e)})
            return []

        target = _resolve(root, parse_path(array_path)) if array_path else root
        if target is _MISSING or target is None:
            return []

        elements = target if isinstance(target, list) else [target]
        return [self._extract_record(element, mappings) for element in elements]

    def _extract_record(self, element: Any, mappings: list[FieldMapping]) -> ExtractedRecord:
        record = ExtractedRecord()
        for mapping in mappings:
            raw = stringify(_resolve(element, parse_path(mapping.source_path)))
            if raw is not None:
                raw = self.apply_transform(raw, mapping.transform, mapping.transform_params)
            record.set(mapping.target_field, raw)
        return record

    def apply_transform(
        self,
        value: str,
        transform: TransformType,
        params: Optional[str] = None,
    ) -> str:
        """
        Apply a transform to a raw value.

        Args:
            value: The raw extracted value
            transform: Which transform to apply
            params: Transform parameter (host, regex pattern or decoder name)

        Returns:
            The transformed value, or the original value if the transform fails
        """
        if transform in (TransformType.NONE, TransformType.PARSE_JSON):
            return value
        if transform == TransformType.DECODE_BASE64:
            return self._decode_base64(value)
        if transform == TransformType.DECODE_HEX:
            return self._decode_hex(value)
        if transform == TransformType.URL_DECODE:
            return unquote(value)
        if transform == TransformType.PREPEND_HOST:
            return self._prepend_host(value, params)
        if transform == TransformType.REGEX_EXTRACT:
            return self._regex_extract(value, params)
        if transform == TransformType.CUSTOM:
            return self._apply_decoder(value, params)
        return value

    def apply_custom_transform(self, value: str, rule: TransformRule) -> str:
        """Apply a named TransformRule to a value."""
        if rule.type == TransformType.REGEX_EXTRACT and rule.pattern:
            return self._regex_extract(value, rule.pattern, rule.replacement)
        if rule.type == TransformType.CUSTOM:
            return self._apply_decoder(value, rule.decoder_class or rule.name)
        return self.apply_transform(value, rule.type, rule.pattern)

    def _decode_base64(self, value: str) -> str:
        try:
            padded = value + "=" * (-len(value) % 4)
            return base64.b64decode(padded, validate=True).decode("utf-8")
        except (binascii.Error, ValueError, UnicodeDecodeError):
            return value

    def _decode_hex(self, value: str) -> str:
        try:
            return bytes.fromhex(value).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return value

    def _prepend_host(self, value: str, host: Optional[str]) -> str:
        if not host or value.startswith(("http://", "https://", "//")):
            return value
        return f"{host.rstrip('/')}/{value.lstrip('/')}"

    def _regex_extract(
        self,
        value: str,
        pattern: Optional[str],
        replacement: Optional[str] = None,
    ) -> str:
        if not pattern:
            return value
        try:
            regex = re.compile(pattern)
        except re.error as e:
            self._log_warn("Invalid regexExtract pattern", {"pattern": pattern, "error": str(e)})
            return value

        if replacement is not None:
            # Accept both "$1" and "\1" group references
            template = re.sub(r"\$(\d+)", r"\\g<\1>", replacement)
            try:
                return regex.sub(template, value)
            except (re.error, IndexError) as e:
                self._log_warn(
                    "Invalid regexExtract replacement",
                    {"replacement": replacement, "error": str(e)},
                )
                return value

        match = regex.search(value)
        if match is None:
            return value
        if match.re.groups >= 1 and match.group(1) is not None:
            return match.group(1)
        return match.group(0)

    def _apply_decoder(self, value: str, name: Optional[str]) -> str:
        if not name:
            return value
        decoder = self._decoders_by_key.get(name.lower())
        if decoder is None:
            self._log_warn("Custom decoder is not registered", {"decoder": name})
            return value
        try:
            return decoder(value)
        except Exception as e:
            self._log_warn(
                "Custom decoder failed, keeping original value",
                {"decoder": name, "error": str(e)},
            )
            return value
