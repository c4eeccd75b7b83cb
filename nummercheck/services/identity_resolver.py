"""Resolve the callee's name and person/business classification.

Name resolution is a priority cascade:

1. Structured agent output (consent / name / organisation).
2. Self-introductions in caller-side transcript turns.
3. Metadata, contact, and analysis fields.
4. Person or business phrases in summary text.
5. The previously stored profile name and aliases.

Entity classification runs separately and may draw on a lower tier than
the name. Anything that normalizes to a generic placeholder label is
discarded at every tier.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from nummercheck.services.payload_normalizer import (
    NormalizedPayload,
    TranscriptMessage,
    as_entity_list,
    data_collection_value,
    probes,
)
from nummercheck.shared.text import (
    as_mapping,
    clean_caller_name,
    is_generic_label,
    pick_string,
    to_bool,
)
from nummercheck.shared.types import UNKNOWN_CALLER, DataSource, EntityTag

if TYPE_CHECKING:
    from nummercheck.db.models import PhoneProfile

logger = logging.getLogger(__name__)

BUSINESS_KEYWORDS = (
    "bedrijf",
    "b.v",
    "bv",
    "bv.",
    "holding",
    "studio",
    "agency",
    "bureau",
    "shop",
    "winkel",
    "restaurant",
    "clinic",
    "solutions",
    "consultancy",
    "services",
    "llc",
    "inc",
    "gmbh",
    "groep",
    "group",
    "co.",
    "company",
)
BUSINESS_ENTITY_TYPES = frozenset({
    "business",
    "company",
    "organization",
    "organisation",
    "business_name",
    "company_name",
    "org",
    "business_entity",
    "corporate",
})
PERSON_ENTITY_TYPES = frozenset({
    "person",
    "individual",
    "human",
    "person_name",
    "caller_name",
    "contact_name",
})
ALLOWED_CALLER_ROLES = frozenset({
    "user",
    "customer",
    "caller",
    "callee",
    "lead",
    "contact",
    "prospect",
    "human",
})

_BUSINESS_KEYWORD_RE = re.compile(
    r"(?<!\w)(?:"
    + "|".join(re.escape(k) for k in sorted(BUSINESS_KEYWORDS, key=len, reverse=True))
    + r")(?!\w)",
    re.IGNORECASE,
)

_PERSON_NAME = r"([^\W\d_](?:[^\W\d_]|['`\- ]){1,80})"
_BUSINESS_NAME = r"([^\W_](?:[^\W_]|['`\-& ]){1,120})"

TRANSCRIPT_NAME_PATTERNS = (
    re.compile(
        r"\b(?:met|u spreekt met|je spreekt met|ik ben|dit is|hier is|spreek je met|je praat met)\s+"
        + _PERSON_NAME,
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:mijn naam is|my name is|this is)\s+" + _PERSON_NAME, re.IGNORECASE),
)
SUMMARY_PERSON_PATTERNS = (
    re.compile(
        r"\b(?:de\s+|het\s+|the\s+)?(?:user|caller|contact|persoon|klant|gebruiker)\b[,:\s]+"
        r"(?:is\s+|met\s+naam\s+|named\s+|called\s+|genaamd\s+|heet\s+)?"
        + _PERSON_NAME,
        re.IGNORECASE,
    ),
)
SUMMARY_BUSINESS_PATTERNS = (
    re.compile(
        r"\b(?:company|organisation|organization|business|bedrijf|onderneming|firma|studio|"
        r"winkel|restaurant|praktijk|bv\.?|b\.v\.|holding|groep|group|agency)\s+"
        r"(?:genaamd\s+|called\s+|named\s+|heet\s+|heette\s+)?"
        + _BUSINESS_NAME,
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(?:van|from)\s+" + _BUSINESS_NAME + r"\s+(?:bedrijf|company|organisation|organization)\b",
        re.IGNORECASE,
    ),
)

# (probe, shape): "collected" reads data_collection_results.<field>.value,
# "direct" reads consent/name/organisation keys on the object itself.
AGENT_OUTPUT_PROBES = (
    *((p, "collected") for p in probes("analysis.data_collection_results")),
    *((p, "direct") for p in probes("analysis")),
    *(
        (p, "collected")
        for p in probes(
            "conversation.data_collection_results",
            "payload.data_collection_results",
            "data.data_collection_results",
        )
    ),
    *(
        (p, "direct")
        for p in probes(
            "conversation.output",
            "conversation.result",
            "conversation.call_result",
            "conversation.call_output",
            "conversation.agent_output",
            "conversation.agent_result",
            "payload.output",
            "payload.result",
            "payload.call_result",
            "payload.call_output",
            "payload.agent_output",
            "payload.agent_result",
            "metadata.output",
            "metadata.result",
            "metadata.agent_output",
            "metadata.agent_result",
            "analysis.output",
            "analysis.result",
            "analysis.agent_output",
            "analysis.agent_result",
            "analysis.data_collection",
            "conversation.data_collection",
        )
    ),
)

PERSON_NAME_KEYS = ("name", "full_name", "contact_name", "display_name")
BUSINESS_NAME_KEYS = (
    "company",
    "company_name",
    "business",
    "business_name",
    "organisation",
    "organization",
)


@dataclass(frozen=True)
class AgentOutput:
    """Structured fields collected by the voice agent during the call."""

    consent: bool
    name: str | None
    organisation: bool | None


@dataclass
class IdentityResolution:
    """Outcome of the identity cascade.

    Attributes:
        caller_name: Resolved name or the unknown-caller sentinel.
        entity_tag: Particulier / Bedrijf, or None if undecided.
        name_source: Where the name came from, None for the sentinel.
        entity_type_source: Where the entity tag came from.
        person_candidates: Every person name seen, in priority order.
        business_candidates: Every business name seen, in priority order.
    """

    caller_name: str = UNKNOWN_CALLER
    entity_tag: EntityTag | None = None
    name_source: DataSource | None = None
    entity_type_source: DataSource | None = None
    person_candidates: list[str] = field(default_factory=list)
    business_candidates: list[str] = field(default_factory=list)


class _CandidateSet:
    """Insertion-ordered, case-insensitively deduplicated name set."""

    def __init__(self, *, allow_digits: bool = True) -> None:
        self._allow_digits = allow_digits
        self._items: dict[str, str] = {}

    def add(self, value: Any) -> None:
        cleaned = clean_caller_name(value)
        if cleaned is None or is_generic_label(cleaned):
            return
        if not self._allow_digits and any(ch.isdigit() for ch in cleaned):
            return
        self._items.setdefault(cleaned.casefold(), cleaned)

    def add_keys(self, source: dict[str, Any], keys: tuple[str, ...]) -> None:
        for key in keys:
            if source.get(key) is not None:
                self.add(source[key])

    def add_matches(self, text: Any, patterns: tuple[re.Pattern[str], ...]) -> None:
        if not isinstance(text, str) or not text.strip():
            return
        for pattern in patterns:
            for match in pattern.finditer(text):
                self.add(match.group(1))

    def items(self) -> list[str]:
        return list(self._items.values())


def contains_business_keyword(text: str | None) -> bool:
    """Whether text contains a business-lexicon word (legal suffix, "studio", ...)."""
    return bool(text) and _BUSINESS_KEYWORD_RE.search(text) is not None


def _agent_output_from(source: Any, shape: str) -> AgentOutput | None:
    if not isinstance(source, dict):
        return None
    if shape == "collected":
        consent_raw = data_collection_value(source, "consent")
        name_raw = data_collection_value(source, "name")
        org_raw = data_collection_value(source, "organisation")
        if org_raw is None:
            org_raw = data_collection_value(source, "organization")
    else:
        consent_raw = source.get("consent")
        name_raw = source.get("name")
        org_raw = source.get("organisation", source.get("organization"))

    consent = to_bool(consent_raw)
    if consent is None:
        return None
    if name_raw is not None and not isinstance(name_raw, str):
        return None
    name = clean_caller_name(name_raw)
    if name is not None and is_generic_label(name):
        name = None
    return AgentOutput(consent=consent, name=name, organisation=to_bool(org_raw))


def extract_agent_output(normalized: NormalizedPayload) -> AgentOutput | None:
    """Find the first well-formed structured agent output in the payload.

    Args:
        normalized: Normalized webhook payload.

    Returns:
        AgentOutput, or None when no candidate carries a boolean consent.
    """
    for probe, shape in AGENT_OUTPUT_PROBES:
        output = _agent_output_from(probe.resolve(normalized.roots), shape)
        if output is not None:
            return output
    return None


def collect_transcript_names(messages: list[TranscriptMessage]) -> list[str]:
    """Extract self-introduced names from caller-side transcript turns.

    Args:
        messages: Transcript turns.

    Returns:
        Candidate names in transcript order.
    """
    candidates = _CandidateSet(allow_digits=False)
    for entry in messages:
        if entry.role and entry.role.strip().lower() not in ALLOWED_CALLER_ROLES:
            continue
        candidates.add_matches(entry.message.rstrip(".!? "), TRANSCRIPT_NAME_PATTERNS)
    return candidates.items()


def _entity_type_tokens(entity: dict[str, Any]) -> set[str]:
    return {
        entity[key].strip().lower()
        for key in ("type", "category", "label", "entity_type", "kind")
        if isinstance(entity.get(key), str)
    }


def _tag_from_text(value: str | None, business: tuple[str, ...], person: tuple[str, ...]) -> EntityTag | None:
    if not value:
        return None
    lowered = value.strip().lower()
    if any(token in lowered for token in business):
        return EntityTag.BEDRIJF
    if any(token in lowered for token in person):
        return EntityTag.PARTICULIER
    return None


def derive_entity_tag(
    *,
    summary: str | None,
    caller_name: str | None,
    metadata: dict[str, Any],
    analysis: dict[str, Any],
) -> EntityTag | None:
    """Classify the callee as person or business from weaker signals.

    Order: metadata tag or entity type, analysis entities, analysis
    classification, business keywords in name/summary, then a resolved
    person name.

    Args:
        summary: Call summary.
        caller_name: Best name candidate so far.
        metadata: Call metadata.
        analysis: Provider analysis block.

    Returns:
        EntityTag, or None when nothing points either way.
    """
    tag = _tag_from_text(
        pick_string(metadata.get("entityTag"), metadata.get("entity_tag"), metadata.get("tag")),
        ("business", "company", "organisation", "organization", "corporate", "bedrijf"),
        ("person", "individual", "human", "persoon", "particulier"),
    ) or _tag_from_text(
        pick_string(
            metadata.get("entityType"),
            metadata.get("entity_type"),
            metadata.get("callerType"),
            metadata.get("caller_type"),
        ),
        ("business", "company", "enterprise", "organisation", "organization", "corporate"),
        ("person", "individual", "human"),
    )
    if tag:
        return tag

    for entity in as_entity_list(analysis.get("entities")):
        tokens = _entity_type_tokens(entity)
        if tokens & BUSINESS_ENTITY_TYPES:
            return EntityTag.BEDRIJF
        if tokens & PERSON_ENTITY_TYPES:
            return EntityTag.PARTICULIER

    classification = as_mapping(analysis.get("classification"))
    category = pick_string(classification.get("category"), classification.get("type"))
    if category:
        lowered = category.lower()
        if lowered in ("business", "company", "organisation", "organization"):
            return EntityTag.BEDRIJF
        if lowered in ("person", "individual", "human"):
            return EntityTag.PARTICULIER

    texts = [
        summary,
        caller_name,
        pick_string(metadata.get("businessName"), metadata.get("companyName")),
    ]
    if any(contains_business_keyword(text) for text in texts):
        return EntityTag.BEDRIJF

    if caller_name and caller_name != UNKNOWN_CALLER:
        return EntityTag.PARTICULIER
    return None


def _summary_texts(normalized: NormalizedPayload) -> list[Any]:
    metadata = normalized.metadata
    analysis = normalized.analysis
    payload = normalized.payload
    data = normalized.roots.get("data", {})
    return [
        normalized.summary,
        analysis.get("summary"),
        analysis.get("transcript_summary"),
        metadata.get("summary"),
        metadata.get("notes"),
        payload.get("summary"),
        payload.get("description"),
        as_mapping(metadata.get("notes")).get("text"),
        as_mapping(metadata.get("notes")).get("summary"),
        as_mapping(data.get("notes")).get("text"),
        as_mapping(normalized.conversation.get("notes")).get("text"),
    ]


def _existing_is_business(existing: PhoneProfile | None) -> bool:
    if existing is None:
        return False
    if existing.entity_tag == EntityTag.BEDRIJF.value:
        return True
    return any("bedrijf" in str(tag).lower() for tag in existing.tags or [])


def _existing_name(existing: PhoneProfile | None) -> str | None:
    if existing is None or not existing.caller_name:
        return None
    if existing.caller_name == UNKNOWN_CALLER or is_generic_label(existing.caller_name):
        return None
    return existing.caller_name


def _collect_candidates(
    normalized: NormalizedPayload,
    existing: PhoneProfile | None,
) -> tuple[_CandidateSet, _CandidateSet]:
    persons = _CandidateSet(allow_digits=False)
    businesses = _CandidateSet()
    metadata = normalized.metadata
    analysis = normalized.analysis
    conversation = normalized.conversation
    data = normalized.roots.get("data", {})
    contact = as_mapping(conversation.get("contact"))
    customer = as_mapping(conversation.get("customer"))

    # Self-introductions
    for name in collect_transcript_names(normalized.transcript_messages):
        persons.add(name)

    # Metadata, contact objects, analysis fields, typed entities
    persons.add_keys(
        metadata,
        (
            "callerName",
            "caller_name",
            "name",
            "personName",
            "person_name",
            "contactName",
            "contact_name",
            "full_name",
            "display_name",
        ),
    )
    persons.add(conversation.get("caller_name"))
    persons.add_keys(as_mapping(metadata.get("contact")), PERSON_NAME_KEYS)
    persons.add_keys(contact, PERSON_NAME_KEYS)
    persons.add_keys(customer, PERSON_NAME_KEYS)
    persons.add_keys(data, ("callerName", "caller_name", "personName", "person_name"))
    persons.add_keys(as_mapping(data.get("contact")), PERSON_NAME_KEYS)
    persons.add_keys(analysis, ("callerName", "caller_name", "personName", "person_name"))

    businesses.add_keys(
        metadata,
        (
            "businessName",
            "business_name",
            "companyName",
            "company_name",
            "organization",
            "organisation",
            "company",
            "business",
            "entityName",
            "entity_name",
        ),
    )
    businesses.add_keys(
        as_mapping(metadata.get("company")),
        ("name", "businessName", "business_name", "companyName", "company_name", "organization", "organisation"),
    )
    businesses.add_keys(
        as_mapping(metadata.get("business")),
        ("name", "company", "company_name", "brand", "brand_name"),
    )
    businesses.add_keys(contact, BUSINESS_NAME_KEYS)
    businesses.add_keys(customer, BUSINESS_NAME_KEYS)
    businesses.add_keys(
        data,
        ("businessName", "business_name", "companyName", "company_name", "organization", "organisation"),
    )
    businesses.add_keys(
        as_mapping(data.get("company")),
        ("name", "businessName", "business_name", "companyName", "company_name"),
    )
    businesses.add_keys(
        analysis,
        ("businessName", "business_name", "companyName", "company_name", "organization", "organisation"),
    )

    for entity in as_entity_list(analysis.get("entities")):
        value = pick_string(entity.get("value"), entity.get("name"), entity.get("text"))
        if value is None:
            continue
        tokens = _entity_type_tokens(entity)
        if tokens & BUSINESS_ENTITY_TYPES:
            businesses.add(value)
        elif tokens & PERSON_ENTITY_TYPES:
            persons.add(value)
        elif contains_business_keyword(value):
            businesses.add(value)
        else:
            persons.add(value)

    # Summary phrases
    for text in _summary_texts(normalized):
        persons.add_matches(text, SUMMARY_PERSON_PATTERNS)
        businesses.add_matches(text, SUMMARY_BUSINESS_PATTERNS)
    businesses.add_matches(normalized.transcript, SUMMARY_BUSINESS_PATTERNS)

    # Previously stored identity
    previous = _existing_name(existing)
    if previous:
        (businesses if _existing_is_business(existing) else persons).add(previous)
    for alias in (existing.aka or []) if existing is not None else []:
        (businesses if contains_business_keyword(str(alias)) else persons).add(alias)

    return persons, businesses


def resolve_identity(
    normalized: NormalizedPayload,
    existing: PhoneProfile | None = None,
) -> IdentityResolution:
    """Run the name and entity cascades for a completed call.

    Args:
        normalized: Normalized webhook payload.
        existing: Stored profile for the same number, if any.

    Returns:
        IdentityResolution; ambiguity resolves to the unknown-caller
        sentinel rather than an error.
    """
    agent = extract_agent_output(normalized)

    if agent is not None and not agent.consent:
        logger.info(
            "identity_consent_denied",
            extra={"conversation_id": normalized.conversation_id},
        )
        return IdentityResolution()

    if agent is not None and agent.name:
        resolution = IdentityResolution(
            caller_name=agent.name,
            name_source=DataSource.ELEVENLABS,
        )
        if agent.organisation is True:
            resolution.entity_tag = EntityTag.BEDRIJF
            resolution.entity_type_source = DataSource.ELEVENLABS
            resolution.business_candidates = [agent.name]
        elif agent.organisation is False:
            resolution.entity_tag = EntityTag.PARTICULIER
            resolution.entity_type_source = DataSource.ELEVENLABS
            resolution.person_candidates = [agent.name]
        else:
            resolution.entity_tag = derive_entity_tag(
                summary=normalized.summary,
                caller_name=agent.name,
                metadata=normalized.metadata,
                analysis=normalized.analysis,
            )
            if resolution.entity_tag is not None:
                resolution.entity_type_source = DataSource.FALLBACK
            resolution.person_candidates = [agent.name]
        return resolution

    persons_set, businesses_set = _collect_candidates(normalized, existing)
    persons = persons_set.items()
    businesses = businesses_set.items()

    initial_tag = derive_entity_tag(
        summary=normalized.summary,
        caller_name=persons[0] if persons else (businesses[0] if businesses else None),
        metadata=normalized.metadata,
        analysis=normalized.analysis,
    )

    name: str | None = None
    kind: EntityTag | None = None
    if initial_tag == EntityTag.BEDRIJF and businesses:
        name, kind = businesses[0], EntityTag.BEDRIJF
    elif persons:
        name, kind = persons[0], EntityTag.PARTICULIER
    elif businesses:
        name, kind = businesses[0], EntityTag.BEDRIJF
    elif _existing_name(existing):
        name = _existing_name(existing)
        kind = EntityTag.BEDRIJF if _existing_is_business(existing) else EntityTag.PARTICULIER

    if name and contains_business_keyword(name):
        kind = EntityTag.BEDRIJF

    entity_tag = kind or initial_tag
    if entity_tag is None and businesses and not persons:
        entity_tag = EntityTag.BEDRIJF

    return IdentityResolution(
        caller_name=name or UNKNOWN_CALLER,
        entity_tag=entity_tag,
        name_source=DataSource.FALLBACK,
        entity_type_source=DataSource.FALLBACK if entity_tag else None,
        person_candidates=persons,
        business_candidates=businesses,
    )
