"""Projection classifier for mirroring answers into Airtable columns.

Maps open-ended question labels onto the fixed column set of the review table.
Classification is pure keyword matching: no LLM calls, no learned weights.

The catalog is data. Each entry pairs a target column with a small rule tree:

- a plain string is a fragment, matched case-insensitively as a substring of
  the question label or the field ref
- ``AnyOf(...)`` matches when any term matches
- ``AllOf(...)`` matches when every term matches (used to tell apart
  near-duplicate questions by a co-occurring topic keyword)
- ``Exactly(...)`` matches only a whole label or ref

Entries are evaluated in catalog order and the first match wins, so overlapping
keyword sets resolve to whichever entry is listed first. Questions that match
no entry but look like a generic "tell us more (optional)" prompt fill the
catch-all detail columns in a fixed order, each at most once per submission.
A topic question whose detail column is already taken moves to the next free
one, or stays unmapped when none is left.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Union

logger = logging.getLogger(__name__)

CATALOG_VERSION = "2024.2"


@dataclass(frozen=True, init=False)
class AnyOf:
    """Disjunction of terms."""

    terms: tuple["Term", ...]

    def __init__(self, *terms: "Term"):
        object.__setattr__(self, "terms", tuple(terms))


@dataclass(frozen=True, init=False)
class AllOf:
    """Conjunction of terms."""

    terms: tuple["Term", ...]

    def __init__(self, *terms: "Term"):
        object.__setattr__(self, "terms", tuple(terms))


@dataclass(frozen=True)
class Exactly:
    """Whole-text match after trimming and lower-casing."""

    text: str


Term = Union[str, AnyOf, AllOf, Exactly]


def matches(rule: Term, haystacks: Sequence[str]) -> bool:
    """Evaluate a rule tree against normalized (lower-cased, stripped) texts.

    Args:
        rule: Fragment string or rule node
        haystacks: Texts to search, typically the label and the field ref

    Returns:
        True if the rule matches

    Example:
        >>> matches(AllOf("matters most", "location"), ["what matters most in a location?"])
        True
    """
    if isinstance(rule, str):
        needle = rule.lower()
        return any(needle in haystack for haystack in haystacks)
    if isinstance(rule, AnyOf):
        return any(matches(term, haystacks) for term in rule.terms)
    if isinstance(rule, AllOf):
        return all(matches(term, haystacks) for term in rule.terms)
    if isinstance(rule, Exactly):
        target = rule.text.strip().lower()
        return any(haystack == target for haystack in haystacks)
    raise TypeError(f"Unsupported rule node: {rule!r}")


@dataclass(frozen=True)
class CatalogEntry:
    """One target column and the rule that selects it.

    Attributes:
        column: Airtable column that receives the answer
        rule: Rule tree selecting this column
        also: Alias columns written with the same value
    """

    column: str
    rule: Term
    also: tuple[str, ...] = ()


# Phrases used by free-text "tell us more" prompts
ELABORATION = AnyOf("tell us more", "add details", "elaborate")

PROJECTION_CATALOG: tuple[CatalogEntry, ...] = (
    # Contact information. A bare "name" only counts as a whole label so that
    # "Company name" or "Name of your project" do not land in Full Name.
    CatalogEntry(
        "Full Name",
        AnyOf("full name", "your name", "what's your name", Exactly("name")),
        also=("Name",),
    ),
    CatalogEntry(
        "Email Address",
        AnyOf("email", "e-mail", "email address", "your email"),
        also=("Email",),
    ),
    CatalogEntry(
        "Mobile Number",
        AnyOf("mobile", "phone", "whatsapp", "contact number", "phone number"),
    ),
    # Demographics
    CatalogEntry("Age Group", AnyOf("age group", "age range", "how old", "your age")),
    CatalogEntry(
        "Current Location",
        AnyOf("where do you currently live", "current location", "living in", "where do you live"),
    ),
    CatalogEntry(
        "Current Profession",
        AnyOf("current profession", "occupation", "what do you do", "your profession"),
    ),
    CatalogEntry(
        "Household Income",
        AnyOf("household income", "annual income", "family income", "income range"),
    ),
    CatalogEntry(
        "Household Size",
        AnyOf("household size", "family size", "how many people", "family members"),
    ),
    # Purchase and investment
    CatalogEntry(
        "Purchase Duration",
        AnyOf("exploring this purchase", "how long", "been exploring", "purchase duration"),
    ),
    CatalogEntry(
        "Buying Journey Stage",
        AnyOf("buying journey", "purchase stage", "where are you", "journey stage"),
    ),
    CatalogEntry(
        "Properties Purchased Before",
        AnyOf(
            "properties have you purchased",
            "bought before",
            "previous purchases",
            "purchased before",
        ),
    ),
    CatalogEntry(
        "Purchase Prompt",
        AnyOf("prompting this property search", "why now", "what prompted", "property search"),
    ),
    CatalogEntry(
        "Dream Property Description",
        AnyOf("dream property", "ideal investment", "perfect property", "ideal property"),
    ),
    CatalogEntry(
        "Preferred Locations",
        AnyOf(
            "preferred location",
            "where would you like",
            "location preference",
            "preferred locations",
        ),
    ),
    CatalogEntry(
        "Investment Intention",
        AnyOf("main intention", "intention behind", "investment goal", "why invest"),
    ),
    CatalogEntry(
        "Investment Inspiration",
        AnyOf(
            "inspires this investment",
            "what inspires",
            "motivation",
            "investment inspiration",
        ),
    ),
    # Property specifications
    CatalogEntry(
        "Preferred Vibe",
        AnyOf("vibe are you looking", "atmosphere", "what vibe", "preferred vibe"),
    ),
    CatalogEntry("Asset Type", AnyOf("asset type", "property type", "type of property")),
    CatalogEntry("Budget Range", AnyOf("budget range", "price range", "how much", "budget")),
    CatalogEntry(
        "Ownership Structure",
        AnyOf("ownership structure", "how own", "ownership type", "ownership"),
    ),
    CatalogEntry(
        "Possession Timeline",
        AnyOf("possession timeline", "when move in", "possession date", "move in"),
    ),
    CatalogEntry(
        "Deal Closure Timeline",
        AnyOf("close the deal", "purchase timeline", "when buy", "deal timeline"),
    ),
    CatalogEntry(
        "Management Model",
        AnyOf("management model", "property management", "manage property", "management"),
    ),
    CatalogEntry(
        "Funding Preference",
        AnyOf("funding preference", "payment", "financing", "funding"),
    ),
    # Location preferences
    CatalogEntry("Location Priorities", AllOf("matters most", "location")),
    CatalogEntry(
        "Preferred Climate",
        AnyOf("climate do you", "weather preference", "climate preference", "preferred climate"),
    ),
    CatalogEntry(
        "Area Type Preference",
        AnyOf("type of area", "urban", "rural", "area preference", "area type"),
    ),
    CatalogEntry(
        "Distance Tolerance",
        AnyOf("too far", "distance", "how far", "distance tolerance"),
    ),
    # Community and environment
    CatalogEntry(
        "Community Setup",
        AnyOf("community setup", "type of community", "community type"),
    ),
    CatalogEntry(
        "Community Friendly For",
        AnyOf("community be friendly", "friendly for", "suitable for", "community friendly"),
    ),
    CatalogEntry(
        "Natural Features",
        AnyOf("natural features", "nature", "natural surroundings"),
    ),
    CatalogEntry("Terrain Preference", AnyOf("terrain", "topography", "land type")),
    CatalogEntry("Preferred Views", AnyOf("preferred views", "view preference", "what views")),
    CatalogEntry(
        "Outdoor Amenities",
        AnyOf("outdoor amenities", "outdoor facilities", "outdoor features"),
    ),
    # Home specifications
    CatalogEntry(
        "Unit Configuration",
        AnyOf("unit configuration", "bedrooms", "bhk", "rooms", "configuration"),
    ),
    CatalogEntry(
        "House Facing Direction",
        AnyOf("facing direction", "vastu", "which direction", "house facing"),
    ),
    CatalogEntry("Furnishing Level", AnyOf("furnishing level", "furnished", "furnishing")),
    CatalogEntry("Interior Style", AnyOf("interior style", "design style", "aesthetic")),
    CatalogEntry(
        "Smart Home Preferences",
        AnyOf("smart home", "automation", "smart features"),
    ),
    CatalogEntry(
        "Must Have Features",
        AnyOf("must-have features", "essential features", "must have"),
    ),
    # Topic-specific elaboration prompts
    CatalogEntry("Investment Details", AllOf(ELABORATION, AnyOf("investment", "invest"))),
    CatalogEntry("Location Details", AllOf(ELABORATION, "location")),
    CatalogEntry("Amenities Details", AllOf(ELABORATION, AnyOf("amenities", "amenity"))),
    CatalogEntry("Home Details", AllOf(ELABORATION, AnyOf("home", "house"))),
    # Referral and notes
    CatalogEntry(
        "Referral Source",
        AnyOf("where did you hear", "hear about us", "how did you find", "referral"),
    ),
    CatalogEntry(
        "Additional Notes",
        AnyOf("tell us anything else", "additional", "anything else", "comments"),
    ),
)

CATCH_ALL_TRIGGER: Term = AnyOf("optional", "add details here", "if you want", "want to tell us more")

CATCH_ALL_SLOTS: tuple[str, ...] = (
    "Investment Details",
    "Location Details",
    "Amenities Details",
    "Home Details",
)


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one question.

    Attributes:
        column: Target column, or None when unmapped
        aliases: Extra columns receiving the same value
        matched: Whether classification succeeded
        via: "catalog", "catch_all" or None
    """

    column: str | None
    aliases: tuple[str, ...] = ()
    matched: bool = False
    via: str | None = None

    @property
    def columns(self) -> tuple[str, ...]:
        """Every column this classification writes to."""
        if self.column is None:
            return ()
        return (self.column, *self.aliases)


UNMAPPED = Classification(column=None)


def normalize(text: str | None) -> str:
    """Lower-case and trim a label or ref for matching."""
    return (text or "").strip().lower()


def match_catalog(
    label: str | None,
    ref: str | None = None,
    catalog: Sequence[CatalogEntry] = PROJECTION_CATALOG,
) -> CatalogEntry | None:
    """Return the first catalog entry matching the label or ref.

    Stateless; catch-all slots are not considered.
    """
    haystacks = [text for text in (normalize(label), normalize(ref)) if text]
    if not haystacks:
        return None
    for entry in catalog:
        if matches(entry.rule, haystacks):
            return entry
    return None


def catalog_columns(
    catalog: Iterable[CatalogEntry] = PROJECTION_CATALOG,
    slots: Iterable[str] = CATCH_ALL_SLOTS,
) -> list[str]:
    """Every column the classifier can produce, in first-seen order."""
    seen: dict[str, None] = {}
    for entry in catalog:
        seen.setdefault(entry.column)
        for alias in entry.also:
            seen.setdefault(alias)
    for slot in slots:
        seen.setdefault(slot)
    return list(seen)


class ProjectionClassifier:
    """Classifies the questions of ONE submission.

    Holds the catch-all slot state, so create a fresh instance per event.

    Example:
        >>> classifier = ProjectionClassifier()
        >>> classifier.classify("Your Email").column
        'Email Address'
        >>> classifier.classify("Anything you want to add? (optional)").column
        'Investment Details'
    """

    def __init__(
        self,
        catalog: Sequence[CatalogEntry] = PROJECTION_CATALOG,
        catch_all_trigger: Term = CATCH_ALL_TRIGGER,
        catch_all_slots: Sequence[str] = CATCH_ALL_SLOTS,
    ):
        self.catalog = tuple(catalog)
        self.catch_all_trigger = catch_all_trigger
        self.catch_all_slots = tuple(catch_all_slots)
        self._used_slots: set[str] = set()

    @property
    def used_slots(self) -> frozenset[str]:
        """Catch-all columns already taken in this event."""
        return frozenset(self._used_slots)

    def classify(self, label: str | None, ref: str | None = None) -> Classification:
        """Pick the target column for one question.

        Args:
            label: Resolved question label
            ref: Stable field reference from the form schema

        Returns:
            Classification; ``matched`` is False when the question is unmapped
        """
        entry = match_catalog(label, ref, self.catalog)
        if entry is not None:
            if entry.column not in self.catch_all_slots:
                return Classification(
                    column=entry.column, aliases=entry.also, matched=True, via="catalog"
                )
            if entry.column not in self._used_slots:
                self._used_slots.add(entry.column)
                return Classification(
                    column=entry.column, aliases=entry.also, matched=True, via="catalog"
                )
            # Slot already holds another answer of this event
            logger.debug(f"{entry.column} already used, moving {label!r} to a free slot")
            return self._claim_free_slot(label)

        haystacks = [text for text in (normalize(label), normalize(ref)) if text]
        if haystacks and matches(self.catch_all_trigger, haystacks):
            return self._claim_free_slot(label)

        return UNMAPPED

    def _claim_free_slot(self, label: str | None) -> Classification:
        slot = self._next_free_slot()
        if slot is None:
            logger.debug(f"No catch-all slot left for {label!r}")
            return UNMAPPED
        self._used_slots.add(slot)
        logger.debug(f"Mapped optional field -> {slot}")
        return Classification(column=slot, matched=True, via="catch_all")

    def _next_free_slot(self) -> str | None:
        for slot in self.catch_all_slots:
            if slot not in self._used_slots:
                return slot
        return None
