# storefront/ai.py
import random
import logging
from typing import Optional

from google import genai
from google.genai import types

from storefront import config

logger = logging.getLogger(__name__)

GEMINI_MODEL = "models/gemini-2.5-flash"

gemini_client = None
if config.USE_GEMINI and config.GEMINI_API_KEY:
    gemini_client = genai.Client(api_key=config.GEMINI_API_KEY)

DEFAULT_HYPE = "Erlebe die Zukunft von Nebula."


def mock_hype(product_name: str, rng: Optional[random.Random] = None) -> str:
    hooks = [
        f"Erlebe mit {product_name} eine neue Dimension des Geschmacks.",
        "High-End Performance trifft auf kosmisches Design.",
        "Das Must-Have für deine nächste Session.",
        "Unvergleichliche Qualität, die man bei jedem Zug spürt.",
    ]
    return (rng or random).choice(hooks)


async def product_hype(product) -> str:
    """One-sentence German marketing hook for a product."""
    if product is None:
        return DEFAULT_HYPE
    if not gemini_client:
        return mock_hype(product.name)

    prompt = (
        f'Generate a short, 1-sentence, high-energy marketing hook for a premium product named "{product.name}". '
        'Use words like "Premium", "Exclusive", "Cosmic", "Next-level". Language: German.'
    )
    try:
        response = await gemini_client.aio.models.generate_content(
            model=GEMINI_MODEL,
            contents=prompt,
            config=types.GenerateContentConfig(temperature=0.9, max_output_tokens=60),
        )
        text = (response.text or "").strip()
        return text or mock_hype(product.name)
    except Exception as e:
        # any provider failure degrades to the canned hooks
        logger.warning("[AI] Gemini hype failed, using fallback: %s", e)
        return mock_hype(product.name)
