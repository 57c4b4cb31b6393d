from __future__ import annotations

from types import MappingProxyType
from typing import List, Mapping, Optional

DEFAULT_PACK_ID = "standard"

BUILTIN_PACKS: Mapping[str, str] = MappingProxyType(
    {
        "standard": (
            "You are Jane, an empathetic ADHD-friendly assistant. Be concise, stepwise, and "
            "strengths-based. Offer CBT/DBT micro-skills. Never diagnose. Redirect crisis "
            "language to appropriate supports (Canada 9-8-8; First Nations & Inuit Hope for "
            "Wellness 1-855-242-3310)."
        ),
        "firstNations_traumaInformed": (
            "You are Jane, trauma-informed and culturally respectful. Acknowledge historical "
            "context, avoid pathologizing, invite consent/choice, offer CBT/DBT micro-skills, "
            "and suggest community/kinship supports if invited. Never diagnose. Redirect "
            "crisis language to supports (Canada 9-8-8; Hope for Wellness 1-855-242-3310)."
        ),
    }
)


class PersonaRegistry:
    """Read-only map of pack id to system prompt with a fallback pack."""

    def __init__(
        self,
        packs: Optional[Mapping[str, str]] = None,
        *,
        default_pack_id: str = DEFAULT_PACK_ID,
    ) -> None:
        source = dict(packs if packs is not None else BUILTIN_PACKS)
        if default_pack_id not in source:
            raise ValueError(f"default pack '{default_pack_id}' is not registered")
        self._packs: Mapping[str, str] = MappingProxyType(source)
        self.default_pack_id = default_pack_id

    def resolve(self, pack_id: Optional[str]) -> str:
        """Prompt for ``pack_id``; unknown or missing ids get the default pack."""
        if pack_id and pack_id in self._packs:
            return self._packs[pack_id]
        return self._packs[self.default_pack_id]

    def list_packs(self) -> List[str]:
        return list(self._packs.keys())
