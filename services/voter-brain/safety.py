"""Content safety: non-persuasion and civic scope.

The assistant must never recommend a party or candidate and only answers
election questions. A flagged query or answer is replaced with a neutral
locale-appropriate message; unflagged answers pass through unchanged.
"""

import logging
import re

from models import SafetyResult

logger = logging.getLogger(__name__)

_MALAYALAM_RE = re.compile(r"[\u0D00-\u0D7F]")

# Only genuine persuasion, not voter education
POLITICAL_PATTERNS = [
    re.compile(r"vote\s+for\s+\w", re.IGNORECASE),
    re.compile(r"best\s+(party|candidate)", re.IGNORECASE),
    re.compile(r"(party|candidate)\s+is\s+best", re.IGNORECASE),
    re.compile(r"should\s+(i|you)\s+vote\s+(for|against)", re.IGNORECASE),
    re.compile(r"recommend.*(party|candidate)", re.IGNORECASE),
    re.compile(r"support.*(bjp|inc|congress|cpi|iuml|ldf|udf|nda)", re.IGNORECASE),
    re.compile(r"which\s+(party|candidate)\s+is\s+better", re.IGNORECASE),
    re.compile(r"who\s+(will|should)\s+win", re.IGNORECASE),
    re.compile(r"ഏത്\s*(പാർട്ടി|സ്ഥാനാർത്ഥി)"),
    re.compile(r"(പാർട്ടി|സ്ഥാനാർത്ഥി).*(നല്ല|ശുപാർശ|best)", re.IGNORECASE),
    re.compile(r"ശുപാർശ"),
    re.compile(r"(bjp|congress|ldf|udf|cpi|iuml|nda).*(വോട്ട്|നല്ല|best)", re.IGNORECASE),
    re.compile(r"(വോട്ട്|vote)\s+(for|against)\s+(bjp|congress|ldf|udf|cpi|iuml|nda)", re.IGNORECASE),
    re.compile(r"(ldf|udf|bjp|congress|cpi|iuml|nda).*(പ്രകടന\s*പത്രിക|manifesto)", re.IGNORECASE),
    re.compile(r"സർക്കാരിന്റെ\s*പ്രകടനം"),
    re.compile(r"government\s+perform", re.IGNORECASE),
]

OUT_OF_SCOPE_PATTERNS = [
    re.compile(r"\b(weather|sports|cricket|movie|recipe|joke|song|game)\b", re.IGNORECASE),
    re.compile(r"\b(stock|market|crypto|bitcoin|investment)\b", re.IGNORECASE),
    re.compile(r"\b(homework|assignment|math\s+problem|solve\s+equation)\b", re.IGNORECASE),
    re.compile(r"\b(write\s+me\s+(a|an)|compose|draft\s+(a|an)\s+(letter|essay|email))\b", re.IGNORECASE),
]

NEUTRAL_RESPONSES = {
    "en": (
        "I'm an impartial voter information assistant. I cannot recommend any political party "
        "or candidate. For election-related questions, I can help with registration, booth "
        "locations, required documents, voting rules, complaint filing, and election schedules. "
        "Please visit eci.gov.in for official information."
    ),
    "ml": (
        "ഞാൻ ഒരു നിഷ്പക്ഷ വോട്ടർ വിവര സഹായിയാണ്. ഒരു രാഷ്ട്രീയ പാർട്ടിയെയോ സ്ഥാനാർത്ഥിയെയോ "
        "ശുപാർശ ചെയ്യാൻ എനിക്ക് കഴിയില്ല. രജിസ്ട്രേഷൻ, ബൂത്ത് ലൊക്കേഷനുകൾ, ആവശ്യമായ രേഖകൾ, "
        "വോട്ടിങ് നിയമങ്ങൾ, പരാതി നൽകൽ, തിരഞ്ഞെടുപ്പ് ഷെഡ്യൂൾ എന്നിവയിൽ സഹായിക്കാം. "
        "eci.gov.in സന്ദർശിക്കുക."
    ),
}

OUT_OF_SCOPE_RESPONSES = {
    "en": (
        "I'm a voter information assistant for Kottayam district elections. I can only help "
        "with election-related topics: voter registration, booth information, voting rules, "
        "election schedule, and complaint filing. 📞 Election Helpline: 1950"
    ),
    "ml": (
        "ഞാൻ കോട്ടയം ജില്ല തിരഞ്ഞെടുപ്പ് വിവര സഹായി ആണ്. വോട്ടർ രജിസ്ട്രേഷൻ, ബൂത്ത് വിവരങ്ങൾ, "
        "വോട്ടിങ് നിയമങ്ങൾ, തിരഞ്ഞെടുപ്പ് ഷെഡ്യൂൾ, പരാതി നൽകൽ എന്നിവയിൽ മാത്രമേ സഹായിക്കാൻ "
        "കഴിയൂ. 📞 ഹെൽപ്‌ലൈൻ: 1950"
    ),
}


def _script_locale(text: str) -> str:
    return "ml" if _MALAYALAM_RE.search(text) else "en"


def is_political_query(text: str) -> bool:
    return any(p.search(text) for p in POLITICAL_PATTERNS)


def is_out_of_scope(text: str) -> bool:
    return any(p.search(text) for p in OUT_OF_SCOPE_PATTERNS)


def check(candidate_text: str, original_query: str) -> SafetyResult:
    """Check a composed answer and the query that produced it."""
    flagged = False
    reason = None
    safe_text = candidate_text

    if is_political_query(original_query):
        flagged, reason = True, "Political persuasion detected in query"
        safe_text = NEUTRAL_RESPONSES[_script_locale(original_query)]
    elif is_out_of_scope(original_query):
        flagged, reason = True, "Out-of-scope topic detected"
        safe_text = OUT_OF_SCOPE_RESPONSES[_script_locale(original_query)]
    elif is_political_query(candidate_text):
        flagged, reason = True, "Political content detected in response"
        safe_text = NEUTRAL_RESPONSES[_script_locale(candidate_text)]

    if flagged:
        logger.info("safety_flag reason=%s", reason)

    return SafetyResult(flagged=flagged, safe_text=safe_text, reason=reason)
