from __future__ import annotations

from registrar.domain.dto import EnrichmentRequest

ENRICHMENT_SYSTEM_PROMPT = (
    "You are an expert IP metadata generator. Create rich, discoverable metadata "
    "for a creative asset. Respond with a single JSON object and nothing else."
)

_RESPONSE_SHAPE = """{
  "title": "enhanced title, or null to keep the current one",
  "description": "compelling, detailed description",
  "attributes": [{"trait_type": "Rarity", "value": "Common/Uncommon/Rare/Epic/Legendary"}]
}"""


def build_enrichment_prompt(request: EnrichmentRequest) -> str:
    lines = [
        "ASSET CONTEXT:",
        f"- Title: {request.current_title}",
        f"- Type: {request.asset_type_hint or 'OTHER'}",
        f"- Current Description: {request.current_description}",
    ]
    storyworld = request.storyworld_context
    if storyworld is not None:
        lines.append(f"- Storyworld: {storyworld.name} ({storyworld.genre or 'Unknown'})")
        if storyworld.themes:
            lines.append(f"- Themes: {', '.join(storyworld.themes)}")
    lines.append("")
    if request.ai_prompt:
        lines.append(f"USER REQUEST: {request.ai_prompt}")
        lines.append("")
    lines.append("Return JSON with this exact structure:")
    lines.append(_RESPONSE_SHAPE)
    return "\n".join(lines)
