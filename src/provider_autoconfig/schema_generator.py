"""
Schema generation for the provider autoconfig system.

Turns a SiteProfile and ContentSchema into a DynamicProviderConfig by
picking the best template from the TemplateLibrary, then stamps the
result with a generation time and human-readable notes.
"""

import re
from datetime import datetime, timezone
from typing import Optional

import idna

from .audit_logger import AuditLogger, ComponentLogging
from .enums import ErrorCode
from .exceptions import TemplateError
from .models import ContentSchema, SiteProfile
from .provider_config import DynamicProviderConfig, normalize_slug
from .templates import GenericTemplate, ProviderTemplate, TemplateLibrary

TITLE_SEPARATORS = re.compile(r"[-|–:•]")

MIN_TITLE_LENGTH = 2


def _display_host(host: str) -> str:
    """Decode an IDNA host for display; ASCII hosts are returned unchanged."""
    if "xn--" not in host.lower():
        return host
    try:
        return idna.decode(host)
    except idna.IDNAError:
        return host


def derive_provider_name(profile: SiteProfile) -> str:
    """
    Derive a display name for a site.

    Uses the page title up to its first separator when that leaves at least
    two characters, otherwise the hostname without ``www.`` and without the
    top-level domain, capitalized.
    """
    if profile.site_title and profile.site_title.strip():
        title_part = TITLE_SEPARATORS.split(profile.site_title, maxsplit=1)[0].strip()
        if len(title_part) >= MIN_TITLE_LENGTH:
            return title_part

    host = _display_host(profile.host.split(":", 1)[0])
    if host.lower().startswith("www."):
        host = host[4:]

    dot = host.rfind(".")
    if dot > 0:
        host = host[:dot]

    return host[:1].upper() + host[1:]


def build_notes(profile: SiteProfile, schema: ContentSchema, template: ProviderTemplate) -> str:
    notes = [
        f"Generated using '{template.display_name}' template",
        f"Site type: {profile.type.value}",
        f"Content category: {profile.category.value}",
    ]

    if profile.has_cloudflare_protection:
        notes.append("WARNING: Cloudflare protection detected - may require additional configuration")
    if profile.requires_javascript:
        notes.append("Site requires JavaScript - ensure requests include proper headers")
    if profile.js_framework:
        notes.append(f"JS Framework: {profile.js_framework}")
    if not schema.endpoints:
        notes.append("WARNING: No API endpoints discovered - configuration may be incomplete")

    return "\n".join(notes)


class SchemaGenerator(ComponentLogging):
    """Generates provider configurations from analysed site data."""

    COMPONENT = "SchemaGenerator"

    def __init__(
        self,
        template_library: Optional[TemplateLibrary] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._library = template_library or TemplateLibrary(logger=logger)
        self._logger = logger

    @property
    def template_library(self) -> TemplateLibrary:
        return self._library

    def generate(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        provider_name: Optional[str] = None,
    ) -> DynamicProviderConfig:
        """
        Generate a provider configuration.

        Args:
            profile: Probed site profile
            schema: Content schema from pattern matching
            provider_name: Display name; derived from the site when omitted

        Returns:
            A complete configuration with ``generated_at`` and ``notes`` set

        Raises:
            TemplateError: If the library has no template at all
        """
        name = provider_name.strip() if provider_name and provider_name.strip() else derive_provider_name(profile)
        self._log_info("Generating provider config", {"name": name, "url": profile.base_url})

        template = self._library.find_best_match(profile, schema)
        if template is None:
            self._log_warn("No matching template found, using generic template", {"name": name})
            template = self._library.get_by_id(GenericTemplate.id)
        if template is None:
            raise TemplateError(
                code=ErrorCode.NO_TEMPLATE.value,
                message="No templates available to generate configuration",
                details={"url": profile.base_url},
            )

        self._log_info("Using template", {"template": template.id, "name": name})
        config = template.apply(profile, schema, name)
        notes = build_notes(profile, schema, template)
        if config.notes:
            notes = f"{config.notes}\n{notes}"
        return config.with_changes(
            slug=config.slug or normalize_slug(profile.host),
            generated_at=datetime.now(timezone.utc),
            notes=notes,
        )
