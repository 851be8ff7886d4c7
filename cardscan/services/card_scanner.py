"""Extract contact fields from a photo of a business card via the LLM service."""

from __future__ import annotations

import logging

from cardscan.clients.llm_client import LLMClient, LLMError
from cardscan.models import ContactDraft

logger = logging.getLogger(__name__)

SCAN_SYSTEM_PROMPT = (
    "You read business cards. Extract the contact details from the image and "
    "respond with ONLY a JSON object with these string fields: name, title, "
    "company, email, phone, officePhone, cellPhone, faxPhone, website, address, "
    "notes. Omit or use null for anything not printed on the card."
)

# JSON key on the wire -> ContactDraft attribute
SCANNED_FIELDS = {
    "name": "name",
    "title": "title",
    "company": "company",
    "email": "email",
    "phone": "phone",
    "officePhone": "office_phone",
    "cellPhone": "cell_phone",
    "faxPhone": "fax_phone",
    "website": "website",
    "address": "address",
    "notes": "notes",
}


class CardScanner:
    def __init__(self, llm: LLMClient | None = None):
        self.llm = llm or LLMClient()

    async def extract(self, image_base64: str) -> ContactDraft | None:
        """Return the fields read off the card, or None when nothing usable came back."""
        if not image_base64:
            return None
        messages = [
            {"role": "system", "content": SCAN_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "Extract the contact information from this business card:"},
                    {"type": "image", "image": image_base64},
                ],
            },
        ]
        try:
            data = await self.llm.complete_json(messages)
        except LLMError as exc:
            logger.warning("Business card extraction failed: %s", exc)
            return None

        fields = {}
        for key, attr in SCANNED_FIELDS.items():
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                fields[attr] = value.strip()
        logger.info("Extracted %d field(s) from business card", len(fields))
        return ContactDraft(**fields)
