"""Best-effort enrichment of a freshly captured contact.

Three independent lookups run concurrently:

1. LinkedIn people-search URL built from name + company (no network call)
2. Profile photo URL inferred by the LLM service
3. Missing email / office / cell / fax numbers inferred by the LLM service

Each lookup fails on its own: a network error, non-OK status, timeout or
unparsable completion yields "no result" for that lookup only. Results are
merged fill-if-absent: a field the user already set (any non-empty string)
is NEVER overwritten; only null or empty fields are filled.

Enrichment only runs on creation, never on edits.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable
from urllib.parse import quote

from cardscan.clients.llm_client import LLMClient, LLMError
from cardscan.models import Contact

logger = logging.getLogger(__name__)

LINKEDIN_PEOPLE_SEARCH_URL = "https://www.linkedin.com/search/results/people/?keywords="

# Response key -> Contact attribute for the missing-info lookup
CONTACT_INFO_FIELDS: dict[str, str] = {
    "email": "email",
    "officePhone": "office_phone",
    "cellPhone": "cell_phone",
    "faxPhone": "fax_phone",
}

PHOTO_SYSTEM_PROMPT = (
    "You research public professional profiles. Given a person's name and "
    "company, find the URL of their publicly accessible LinkedIn profile photo. "
    "Respond with JSON containing a single 'profilePhotoUrl' field. Use null "
    "when you are not confident."
)

CONTACT_INFO_SYSTEM_PROMPT = (
    "You research business contact details. Given a person's name and company, "
    "find their likely company email address and any phone numbers. Respond with "
    "ONLY a JSON object with the fields email, officePhone, cellPhone, faxPhone. "
    "Use an empty string for anything you cannot find with confidence."
)


@dataclass
class EnrichmentResult:
    """Outcome of one enrichment run."""
    contact: Contact
    fields_updated: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def enriched(self) -> bool:
        return bool(self.fields_updated)


def _clean(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def build_search_query(contact: Contact) -> str:
    """``name company`` with blanks dropped. Title is left out on purpose."""
    terms = [_clean(contact.name), _clean(contact.company)]
    return " ".join(t for t in terms if t)


def linkedin_search_url(contact: Contact) -> str | None:
    """Deterministic LinkedIn people-search URL, or None without name/company."""
    query = build_search_query(contact)
    if not query:
        return None
    # Same escaping as JavaScript encodeURIComponent
    return LINKEDIN_PEOPLE_SEARCH_URL + quote(query, safe="!~*'()")


def _lookup_prompt(contact: Contact, ask: str) -> str:
    return (
        f"Name: {_clean(contact.name) or 'Unknown'}\n"
        f"Company: {_clean(contact.company) or 'Unknown'}\n\n"
        f"{ask}\nMatch on name and company only, not job title."
    )


def merge_fill_if_absent(contact: Contact, found: dict[str, str | None]) -> tuple[Contact, list[str]]:
    """Apply ``found`` values only to fields that are currently blank."""
    updates: dict[str, str] = {}
    for field_name, value in found.items():
        value = _clean(value)
        if value and contact.is_blank(field_name):
            updates[field_name] = value
    if not updates:
        return contact, []
    return contact.model_copy(update=updates), list(updates)


class EnrichmentPipeline:
    """Runs the lookups for one contact and merges what they find."""

    def __init__(self, llm: LLMClient | None = None):
        self.llm = llm or LLMClient()

    async def infer_linkedin_url(self, contact: Contact) -> str | None:
        url = linkedin_search_url(contact)
        if url:
            logger.debug("Generated LinkedIn search URL: %s", url)
        return url

    async def infer_profile_photo(self, contact: Contact) -> str | None:
        if not build_search_query(contact):
            return None
        messages = [
            {"role": "system", "content": PHOTO_SYSTEM_PROMPT},
            {"role": "user", "content": _lookup_prompt(
                contact, "Provide their LinkedIn profile photo URL as JSON.",
            )},
        ]
        try:
            data = await self.llm.complete_json(messages)
        except LLMError as exc:
            logger.warning("Profile photo lookup failed for %s: %s", build_search_query(contact), exc)
            return None
        photo_url = _clean(data.get("profilePhotoUrl"))
        return photo_url or None

    async def infer_missing_contact_info(self, contact: Contact) -> dict[str, str]:
        """Return values only for fields that are blank on ``contact``."""
        if not build_search_query(contact):
            return {}
        messages = [
            {"role": "system", "content": CONTACT_INFO_SYSTEM_PROMPT},
            {"role": "user", "content": _lookup_prompt(
                contact,
                'Return ONLY JSON: {"email": "", "officePhone": "", "cellPhone": "", "faxPhone": ""}',
            )},
        ]
        try:
            data = await self.llm.complete_json(messages)
        except LLMError as exc:
            logger.warning("Contact info lookup failed for %s: %s", build_search_query(contact), exc)
            return {}

        found: dict[str, str] = {}
        for key, attr in CONTACT_INFO_FIELDS.items():
            value = _clean(data.get(key))
            if value and contact.is_blank(attr):
                found[attr] = value
        return found

    async def enrich(self, contact: Contact) -> EnrichmentResult:
        """Run every lookup whose target fields are still blank, then merge.

        Lookups are started together and all awaited; one failing never
        cancels or poisons the others.
        """
        lookups: dict[str, Awaitable] = {}
        if contact.is_blank("linkedin_url"):
            lookups["linkedin_url"] = self.infer_linkedin_url(contact)
        if contact.is_blank("profile_photo_url"):
            lookups["profile_photo_url"] = self.infer_profile_photo(contact)
        if any(contact.is_blank(attr) for attr in CONTACT_INFO_FIELDS.values()):
            lookups["contact_info"] = self.infer_missing_contact_info(contact)

        result = EnrichmentResult(contact=contact)
        if not lookups:
            return result

        outcomes = await asyncio.gather(*lookups.values(), return_exceptions=True)

        found: dict[str, str | None] = {}
        for step, outcome in zip(lookups, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Enrichment step %s crashed for %s: %r",
                    step, build_search_query(contact), outcome,
                )
                result.errors[step] = str(outcome) or type(outcome).__name__
                continue
            if step == "contact_info":
                found.update(outcome)
            elif outcome:
                found[step] = outcome

        result.contact, result.fields_updated = merge_fill_if_absent(contact, found)
        logger.info(
            "Enrichment for %s: fields=%s errors=%s",
            build_search_query(contact) or contact.id,
            result.fields_updated, list(result.errors),
        )
        return result
