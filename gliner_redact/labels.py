from __future__ import annotations

# Entity labels passed to the model prompt. Kept focused: every extra label
# lengthens the prompt and every sequence in the batch.
PII_LABELS: tuple[str, ...] = (
    "person",
    "email address",
    "phone number",
    "address",
    "credit card",
    "ssn",
    "passport number",
    "driver license",
    "dob",
    "ip address",
    "bank account",
    "medical condition",
    "organization",
    "url",
    "username",
    "password",
)

# Model label -> placeholder type used in "<type counter>".
LABEL_TO_TYPE: dict[str, str] = {
    "person": "person",
    "email address": "email",
    "phone number": "phone",
    "address": "address",
    "credit card": "credit_card",
    "ssn": "ssn",
    "passport number": "passport",
    "driver license": "driver_license",
    "dob": "date_of_birth",
    "ip address": "ip_address",
    "bank account": "bank_account",
    "medical condition": "medical_condition",
    "organization": "organization",
    "url": "url",
    "username": "username",
    "password": "password",
}


def placeholder_type(label: str) -> str:
    normalized = label.strip()
    mapped = LABEL_TO_TYPE.get(normalized) or LABEL_TO_TYPE.get(normalized.lower())
    if mapped:
        return mapped
    return "_".join(normalized.lower().split()) or "pii"
