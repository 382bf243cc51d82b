from __future__ import annotations

from dataclasses import dataclass

DEFAULT_LICENSE_TEMPLATE_ID = "non-commercial-social-remixing"


@dataclass(frozen=True)
class LicenseTerms:
    allow_derivatives: bool
    commercial_use: bool
    royalty_percentage: int
    territory: str = "GLOBAL"
    attribution: bool = True

    def to_json(self) -> dict[str, object]:
        return {
            "allow_derivatives": self.allow_derivatives,
            "commercial_use": self.commercial_use,
            "royalty_percentage": self.royalty_percentage,
            "territory": self.territory,
            "attribution": self.attribution,
        }


@dataclass(frozen=True)
class LicenseTemplate:
    template_id: str
    name: str
    description: str
    terms: LicenseTerms


LICENSE_TEMPLATES: dict[str, LicenseTemplate] = {
    template.template_id: template
    for template in (
        LicenseTemplate(
            template_id="non-commercial-social-remixing",
            name="Non-Commercial Social Remixing",
            description="Free to use for non-commercial purposes with attribution. Allows remixing and derivatives.",
            terms=LicenseTerms(allow_derivatives=True, commercial_use=False, royalty_percentage=0),
        ),
        LicenseTemplate(
            template_id="commercial-use",
            name="Commercial Use",
            description="Allows commercial usage with revenue sharing. No derivatives allowed.",
            terms=LicenseTerms(allow_derivatives=False, commercial_use=True, royalty_percentage=10),
        ),
        LicenseTemplate(
            template_id="commercial-remix",
            name="Commercial Remix",
            description="Commercial use and remixing allowed with revenue sharing on derivatives.",
            terms=LicenseTerms(allow_derivatives=True, commercial_use=True, royalty_percentage=5),
        ),
        LicenseTemplate(
            template_id="creative-commons-attribution",
            name="Creative Commons Attribution",
            description="Open license similar to CC-BY. Commercial and non-commercial use with attribution.",
            terms=LicenseTerms(allow_derivatives=True, commercial_use=True, royalty_percentage=0),
        ),
    )
}


def get_license_template(template_id: str) -> LicenseTemplate | None:
    return LICENSE_TEMPLATES.get(template_id)


def list_license_templates() -> list[LicenseTemplate]:
    return list(LICENSE_TEMPLATES.values())
