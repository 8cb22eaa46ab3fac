"""Prompts for two-pass voter document extraction.

Pass 1 asks the vision model for strict JSON describing the document.
Pass 2 asks for a short explanation of those results in the user's language.
"""

from models import DocumentType, ExtractedField, FieldValidationError, Locale

LANGUAGE_NAMES: dict[str, str] = {"en": "English", "ml": "Malayalam"}

EXTRACTION_SYSTEM_PROMPT = "You are a document analysis AI. Respond only with valid JSON."

EXTRACTION_PROMPT = """You are a document analysis expert for Indian election documents. Analyze this image and extract structured data.

INSTRUCTIONS:
1. First determine the document type: epic_card, form_6, form_6a, form_7, form_8, aadhaar, or unknown.
2. Extract ALL visible text fields with their values.
3. Rate your confidence for each field (0.0 to 1.0).
4. Note any fields you expect but cannot find.

Common field names:
- epic_card: epic_number, name, name_local, relative_name, relative_relation, dob_or_age, gender, address, constituency, part_number, serial_number, photo_present
- form_6: name, surname, relative_name, relative_relation, dob, gender, address, constituency, state, phone, email, declaration_signed, date
- aadhaar: aadhaar_number, name, dob, gender, address

RESPOND ONLY with valid JSON in this exact format:
{
  "document_type": "epic_card",
  "fields": [
    {"name": "epic_number", "value": "ABC1234567", "confidence": 0.95},
    {"name": "name", "value": "John Doe", "confidence": 0.90}
  ],
  "missing_fields": ["photo_present"],
  "overall_confidence": 0.88,
  "notes": "Image slightly blurred in address area"
}

CRITICAL OUTPUT RULES:
- Return ONLY a single valid JSON object. No other text before or after.
- Do NOT wrap in code fences. No markdown, no explanation."""


def language_name(locale: Locale) -> str:
    return LANGUAGE_NAMES.get(locale, "English")


def explanation_system_prompt(locale: Locale) -> str:
    return f"You are a neutral civic assistant for voters. Respond in {language_name(locale)}."


def build_explanation_prompt(
    doc_type: DocumentType,
    fields: list[ExtractedField],
    missing_fields: list[str],
    validation_errors: list[FieldValidationError],
    locale: Locale,
) -> str:
    lang = language_name(locale)
    field_summary = "\n".join(
        f"- {f.name}: {f.value} (confidence: {f.confidence * 100:.0f}%)" for f in fields
    ) or "- (none)"

    if missing_fields:
        missing = f"Missing fields: {', '.join(missing_fields)}"
    else:
        missing = "All expected fields found."

    if validation_errors:
        issues = "Validation issues:\n" + "\n".join(f"- {e.field}: {e.error}" for e in validation_errors)
    else:
        issues = "No validation issues."

    return f"""Explain the following document extraction results to the user in {lang}. Be helpful and civic.

Document Type: {doc_type.value}
Extracted Fields:
{field_summary}

{missing}
{issues}

INSTRUCTIONS:
- Respond in {lang}.
- Keep it brief (2-3 sentences).
- If fields are missing, suggest what the user should check.
- If there are validation errors, explain what might be wrong.
- Never display full Aadhaar numbers, EPIC numbers, phone numbers or other personal identifiers.
- Be encouraging and helpful."""
