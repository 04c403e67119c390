import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from nltk.stem.porter import PorterStemmer

from mira.logging_config import get_logger

logger = get_logger("intent_service")

MIN_INTENT_SCORE = 3
MAX_FACTORY_CODES = 5
MAX_SALE_NUMBER = 999
KEYWORD_SUBSTRING_POINTS = 2
KEYWORD_STEM_POINTS = 1
PATTERN_POINTS = 3


class Intent(str, Enum):
    FACTORY_QUERY = "factory_query"
    ELEVATION_QUERY = "elevation_query"
    MARKET_REPORT = "market_report"
    DEPARTMENT_CONTACT = "department_contact"
    BOT_CONTROL = "bot_control"
    HELP = "help"
    CONTACT = "contact"
    STATUS = "status"
    CASUAL_CONVERSATION = "casual_conversation"
    IRRELEVANT = "irrelevant"
    GENERAL = "general"


# Intents answered only when the general-response cooldown allows it.
LOW_INFORMATION_INTENTS = {Intent.GENERAL, Intent.IRRELEVANT}


@dataclass(frozen=True)
class IntentPattern:
    intent: Intent
    keywords: tuple[str, ...]
    patterns: tuple[re.Pattern, ...]
    weight: int


def _compile(*expressions: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(expression, re.IGNORECASE) for expression in expressions)


# Declaration order is the tie-break order.
INTENT_PATTERNS: tuple[IntentPattern, ...] = (
    IntentPattern(
        Intent.FACTORY_QUERY,
        ("mf", "factory", "performance", "average", "data", "details", "code"),
        _compile(
            r"mf\s*[a-z]?\s*\d{3,4}",
            r"factory\s+(code|performance|data|average)",
            r"\b(mf\d{3,4})\b",
            r"\baverage\b.*\bmf\b",
        ),
        10,
    ),
    IntentPattern(
        Intent.ELEVATION_QUERY,
        ("elevation", "uh", "wh", "high", "medium", "low", "price"),
        _compile(
            r"elevation\s+(average|price|rate)",
            r"(uh|wh|high|medium|low)\s+(average|price)",
            r"sale\s+\d+\s+elevation",
        ),
        8,
    ),
    IntentPattern(
        Intent.MARKET_REPORT,
        ("market", "report", "pdf", "sale", "document"),
        _compile(
            r"market\s+report",
            r"sale\s+\d+\s+report",
            r"pdf\s+report",
            r"report\s+sale",
        ),
        9,
    ),
    IntentPattern(
        Intent.DEPARTMENT_CONTACT,
        ("valuation", "account", "technical", "support", "it", "marketing", "inquiry", "contact", "help"),
        _compile(
            r"valuation\s+(department|inquiry|report)",
            r"account(s|ing)\s+(department|query|issue)",
            r"(technical|it)\s+support",
            r"marketing\s+(inquiry|department)",
        ),
        7,
    ),
    IntentPattern(
        Intent.BOT_CONTROL,
        ("stop", "mute", "pause", "disable", "enable", "activate", "unmute", "resume", "bot"),
        _compile(
            r"stop\s+(bot|responding|messages)",
            r"mute\s+bot",
            r"disable\s+bot",
            r"pause\s+bot",
            r"unmute\s+bot",
            r"enable\s+bot",
            r"activate\s+bot",
            r"resume\s+bot",
            r"^(stop|mute|pause)$",
            r"^(start|unmute|resume|activate)$",
        ),
        10,
    ),
    IntentPattern(
        Intent.HELP,
        ("help", "menu", "start", "options", "commands"),
        _compile(r"^help$", r"^menu$", r"^start$", r"what can you do"),
        6,
    ),
    IntentPattern(
        Intent.CONTACT,
        ("contact", "email", "phone", "address", "location"),
        _compile(r"contact\s+info", r"email\s+address", r"phone\s+number"),
        6,
    ),
    IntentPattern(
        Intent.STATUS,
        ("status", "stats", "statistics", "analytics"),
        _compile(r"^status$", r"^stats$", r"bot\s+status"),
        5,
    ),
    IntentPattern(
        Intent.CASUAL_CONVERSATION,
        (
            "hi",
            "hello",
            "hey",
            "good morning",
            "good evening",
            "thanks",
            "thank you",
            "ok",
            "okay",
            "bye",
            "goodbye",
        ),
        _compile(
            r"^(hi|hello|hey)$",
            r"^good\s+(morning|afternoon|evening|night)$",
            r"^(thanks|thank you|thx)$",
            r"^(ok|okay|k)$",
            r"^(bye|goodbye|see you)$",
        ),
        3,
    ),
    IntentPattern(
        Intent.IRRELEVANT,
        ("vacancy", "vacancies", "job", "hiring", "career", "recruitment", "apply"),
        _compile(
            r"any\s+(vacancy|vacancies|job)",
            r"(hiring|recruitment|career)",
            r"looking\s+for\s+job",
        ),
        8,
    ),
)

# Synonym tables: first substring hit in declaration order wins.
ELEVATION_SYNONYMS = {
    "uh": "UH",
    "u.h": "UH",
    "upper high": "UH",
    "wh": "WH",
    "w.h": "WH",
    "western high": "WH",
    "high": "H",
    "h ": "H",
    "medium": "M",
    "m ": "M",
    "med": "M",
    "low": "L",
    "l ": "L",
    "bt": "BT",
    "b.t": "BT",
    "bottom": "BT",
}

DEPARTMENT_SYNONYMS = {
    "valuation": "Valuation",
    "appraisal": "Valuation",
    "account": "Accounts",
    "accounts": "Accounts",
    "tax": "Accounts",
    "invoice": "Accounts",
    "vat": "Accounts",
    "technical": "IT",
    "it": "IT",
    "support": "IT",
    "system": "IT",
    "marketing": "Marketing",
    "inquiry": "Marketing",
    "general": "Marketing",
}

MUTE_TOKENS = {"stop", "mute", "pause", "disable"}
UNMUTE_TOKENS = {"unmute", "resume", "activate", "enable", "start"}

FACTORY_CODE_PATTERN = re.compile(r"\b(MF[A-Z]?\s*\d{3,4})\b", re.IGNORECASE)
SALE_NUMBER_PATTERN = re.compile(r"sale\s*(?:no\.?|number)?\s*(\d{1,3})", re.IGNORECASE)
TOKEN_PATTERN = re.compile(r"\w+")


@dataclass
class EntitySet:
    factory_codes: list[str] = field(default_factory=list)
    sale_number: Optional[str] = None
    elevation: Optional[str] = None
    department: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.factory_codes or self.sale_number or self.elevation or self.department)

    def as_dict(self) -> dict:
        return {
            "factory_codes": list(self.factory_codes),
            "sale_number": self.sale_number,
            "elevation": self.elevation,
            "department": self.department,
        }


def tokenize(text: str) -> list[str]:
    return TOKEN_PATTERN.findall(text.lower())


def is_unmute_command(text: str) -> bool:
    return bool(UNMUTE_TOKENS.intersection(tokenize(text or "")))


def is_mute_command(text: str) -> bool:
    """Mute verbs, unless the text also carries an unmute verb ("unmute" contains "mute")."""
    tokens = set(tokenize(text or ""))
    if tokens & UNMUTE_TOKENS:
        return False
    return bool(tokens & MUTE_TOKENS)


class IntentClassifier:
    """Weighted keyword/regex scorer over a fixed intent table."""

    def __init__(self, patterns: tuple[IntentPattern, ...] = INTENT_PATTERNS):
        self.patterns = patterns
        self.stemmer = PorterStemmer(mode=PorterStemmer.ORIGINAL_ALGORITHM)
        self._keyword_stems = {
            keyword: self.stemmer.stem(keyword) for entry in patterns for keyword in entry.keywords
        }

    def score(self, text: str) -> dict[Intent, int]:
        clean_text = text.lower().strip()
        stems = {self.stemmer.stem(token) for token in tokenize(clean_text)}

        scores: dict[Intent, int] = {}
        for entry in self.patterns:
            score = 0
            for keyword in entry.keywords:
                if keyword in clean_text:
                    score += KEYWORD_SUBSTRING_POINTS
                if self._keyword_stems[keyword] in stems:
                    score += KEYWORD_STEM_POINTS
            for pattern in entry.patterns:
                score += PATTERN_POINTS * sum(1 for _ in pattern.finditer(clean_text))
            scores[entry.intent] = score * entry.weight
        return scores

    def classify(self, text: str) -> Intent:
        if not text or not isinstance(text, str):
            return Intent.GENERAL

        best_match = Intent.GENERAL
        highest_score = 0
        for intent, score in self.score(text).items():
            if score > highest_score:
                highest_score = score
                best_match = intent

        return best_match if highest_score >= MIN_INTENT_SCORE else Intent.GENERAL

    def extract_entities(self, text: str) -> EntitySet:
        text = text or ""
        return EntitySet(
            factory_codes=extract_factory_codes(text),
            sale_number=extract_sale_number(text),
            elevation=extract_elevation(text),
            department=extract_department(text),
        )


def extract_factory_codes(text: str, limit: Optional[int] = MAX_FACTORY_CODES) -> list[str]:
    codes: list[str] = []
    for match in FACTORY_CODE_PATTERN.finditer(text):
        code = re.sub(r"\s+", "", match.group(1)).upper()
        if code not in codes:
            codes.append(code)
    return codes if limit is None else codes[:limit]


def extract_sale_number(text: str) -> Optional[str]:
    matches = SALE_NUMBER_PATTERN.findall(text)
    if not matches:
        return None
    number = int(matches[-1])
    if number > MAX_SALE_NUMBER:
        return None
    return f"{number:03d}"


def _first_synonym(text: str, table: dict[str, str]) -> Optional[str]:
    clean_text = text.lower()
    for key, value in table.items():
        if key in clean_text:
            return value
    return None


def extract_elevation(text: str) -> Optional[str]:
    return _first_synonym(text, ELEVATION_SYNONYMS)


def extract_department(text: str) -> Optional[str]:
    return _first_synonym(text, DEPARTMENT_SYNONYMS)
