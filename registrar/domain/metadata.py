from __future__ import annotations

from registrar.domain.licenses import get_license_template
from registrar.domain.models import AssetContext, AssetMetadata, MetadataAttribute, RegistrationSnapshot

METADATA_DOCUMENT_VERSION = "ip-metadata:v1"

_IP_TYPES = frozenset({"CHARACTER", "STORYLINE", "LORE", "IMAGE", "VIDEO", "AUDIO"})


def ip_type_for(asset_type: str | None) -> str:
    normalized = (asset_type or "").strip().upper()
    if normalized in _IP_TYPES:
        return normalized
    return "OTHER"


def base_metadata(*, asset_id: str, asset: AssetContext | None) -> AssetMetadata:
    """Metadata derived from the asset itself, before enrichment or overrides."""
    if asset is None:
        return AssetMetadata(title=asset_id, description="")

    attributes = [
        MetadataAttribute(trait_type="Asset Type", value=asset.asset_type),
    ]
    if asset.storyworld is not None:
        attributes.append(MetadataAttribute(trait_type="Storyworld", value=asset.storyworld.name))
        attributes.append(MetadataAttribute(trait_type="Genre", value=asset.storyworld.genre or "Unknown"))
        if asset.storyworld.themes:
            attributes.append(MetadataAttribute(trait_type="Themes", value=", ".join(asset.storyworld.themes)))

    description = asset.description or f"A {asset.asset_type.lower()} asset"
    return AssetMetadata(title=asset.title, description=description, attributes=tuple(attributes))


def merge_metadata(base: AssetMetadata, overlay: AssetMetadata, *, replace_attributes: bool) -> AssetMetadata:
    """Overlay non-empty title/description and fold attributes by trait_type.

    With ``replace_attributes`` an overlay attribute replaces a base attribute
    of the same trait_type; otherwise existing traits win and only new ones
    are appended.
    """
    merged: dict[str, MetadataAttribute] = {item.trait_type: item for item in base.attributes}
    for item in overlay.attributes:
        if replace_attributes or item.trait_type not in merged:
            merged[item.trait_type] = item
    return AssetMetadata(
        title=overlay.title or base.title,
        description=overlay.description or base.description,
        attributes=tuple(merged.values()),
    )


def effective_metadata(snapshot: RegistrationSnapshot, *, asset: AssetContext | None) -> AssetMetadata:
    metadata = base_metadata(asset_id=snapshot.asset_id, asset=asset)
    if snapshot.enriched_metadata is not None:
        metadata = merge_metadata(metadata, snapshot.enriched_metadata, replace_attributes=False)
    if snapshot.custom_metadata is not None:
        metadata = merge_metadata(metadata, snapshot.custom_metadata, replace_attributes=True)
    return metadata


def build_metadata_document(snapshot: RegistrationSnapshot, *, asset: AssetContext | None) -> dict[str, object]:
    """Finalized document uploaded to decentralized storage.

    Contains no timestamps so that re-uploading an identical record yields
    an identical document.
    """
    metadata = effective_metadata(snapshot, asset=asset)
    template = get_license_template(snapshot.license_template_id)
    document: dict[str, object] = {
        "version": METADATA_DOCUMENT_VERSION,
        "asset_id": snapshot.asset_id,
        "ip_type": ip_type_for(asset.asset_type if asset is not None else None),
        "creators": [{"owner_id": snapshot.owner_id, "role": "Original Creator"}],
        "license": {
            "template_id": snapshot.license_template_id,
            "terms": template.terms.to_json() if template is not None else None,
        },
        "ai_enriched": snapshot.enriched_metadata is not None,
    }
    document.update(metadata.to_json())
    return document
