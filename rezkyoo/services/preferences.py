"""Dining preference handling: mood parsing, keywords and search queries."""

import json
import logging
import re

from openai import AsyncOpenAI

from rezkyoo.models import DiningPreferences, SearchPreferences

logger = logging.getLogger(__name__)

# Related cuisines searched alongside the one asked for
CUISINE_SIBLINGS = {
    "asian": ["thai", "chinese", "japanese", "korean", "vietnamese", "southeast asian", "ramen", "szechuan"],
    "thai": ["asian", "southeast asian", "ramen"],
    "chinese": ["asian", "szechuan", "noodles", "ramen"],
    "szechuan": ["chinese", "asian"],
    "ramen": ["japanese", "asian", "noodles"],
    "italian": ["pizza", "pasta"],
    "steakhouse": ["steak", "grill"],
    "seafood": ["fish", "oyster bar"],
}

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "any", "are", "for", "from", "good", "have", "like",
        "looking", "maybe", "near", "nice", "not", "place", "please", "some",
        "something", "that", "the", "this", "want", "with", "would", "restaurant",
    }
)

PARSE_SYSTEM_PROMPT = """Extract a normalized JSON of dining intent.
Return ONLY JSON with keys:
cuisines[], dishes[], attributes[], dietary[], vibe[], budget($|$$|$$$|$$$$|""), hard_excludes[], radius_km(number).
Infer conservatively; empty arrays if unknown; radius_km default 5."""


def build_chips(parsed: DiningPreferences) -> list[str]:
    """Turn parsed preferences into de-duplicated display chips.

    Hard excludes become "not <x>" chips.
    """
    raw = [
        *parsed.dishes,
        *parsed.cuisines,
        *parsed.attributes,
        *parsed.vibe,
        *([parsed.budget] if parsed.budget else []),
        *(f"not {x}" for x in parsed.hard_excludes),
    ]
    return list(dict.fromkeys(chip for chip in raw if chip))


def extract_keywords(notes: str | None) -> list[str]:
    """Pull content words out of free-text preference notes."""
    if not notes:
        return []
    words = re.findall(r"[a-z][a-z'-]{2,}", notes.lower())
    return list(dict.fromkeys(w for w in words if w not in STOP_WORDS))


def preference_keywords(preferences: SearchPreferences) -> list[str]:
    """Positive keywords used to score reviews.

    Args:
        preferences: The diner's preferences

    Returns:
        Lower-cased keywords, excluding "not ..." chips
    """
    keywords: list[str] = list(preferences.chips)
    if preferences.parsed:
        keywords += preferences.parsed.dishes
        keywords += preferences.parsed.attributes
        keywords += preferences.parsed.cuisines
    if preferences.cuisine and preferences.cuisine.lower() != "any":
        keywords.append(preferences.cuisine)
    if not preferences.parsed:
        keywords += extract_keywords(preferences.notes)

    cleaned = (k.strip().lower() for k in keywords if k)
    return list(dict.fromkeys(k for k in cleaned if k and not k.startswith("not ")))


def synthesize_queries(preferences: SearchPreferences) -> list[str]:
    """Build text-search queries from cuisines (with siblings) and dishes.

    Args:
        preferences: The diner's preferences

    Returns:
        De-duplicated queries; ["restaurant"] when nothing specific was asked
    """
    parsed = preferences.parsed or DiningPreferences()
    cuisines = [c.lower() for c in parsed.cuisines]
    if preferences.cuisine and preferences.cuisine.lower() != "any":
        cuisines.append(preferences.cuisine.lower())

    expanded = list(cuisines)
    for cuisine in cuisines:
        expanded += CUISINE_SIBLINGS.get(cuisine, [])

    dishes = [d.lower() for d in parsed.dishes[:3]]
    queries = [
        *(f"{c} restaurant" for c in expanded),
        *(f"{d} restaurant" for d in dishes),
        *dishes,
    ]
    return list(dict.fromkeys(q for q in queries if q)) or ["restaurant"]


class PreferenceParser:
    """Parses a free-text dining mood into structured preferences."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini") -> None:
        """Initialize the parser.

        Args:
            client: OpenAI client
            model: Chat model to use
        """
        self.client = client
        self.model = model

    async def parse(self, text: str) -> tuple[DiningPreferences, list[str]]:
        """Parse a mood like "cozy ramen, nothing too loud".

        Args:
            text: Free-text description

        Returns:
            Parsed preferences and display chips

        Raises:
            ValueError: If the text is empty
        """
        if not text or not text.strip():
            raise ValueError("Missing text")

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": PARSE_SYSTEM_PROMPT},
                {"role": "user", "content": f'User: """{text}"""'},
            ],
            temperature=0.2,
            response_format={"type": "json_object"},
        )

        content = response.choices[0].message.content or "{}"
        parsed = DiningPreferences.model_validate(json.loads(content))
        logger.info(f"Parsed dining preferences: {parsed.model_dump(exclude_defaults=True)}")
        return parsed, build_chips(parsed)
