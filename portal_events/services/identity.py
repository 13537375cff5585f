"""Registrant subjects, acting identities and duplicate-detection keys."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from portal_events.models import Registration
from portal_events.services.errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ADMIN_ROLE = "ADMIN"


@dataclass(frozen=True)
class GuestInfo:
    full_name: str
    email: str
    phone_number: str
    company: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Subject:
    """Who a registration is for: an authenticated user or a guest."""

    user_id: Optional[str] = None
    guest: Optional[GuestInfo] = None

    def __post_init__(self) -> None:
        if (self.user_id is None) == (self.guest is None):
            raise ValueError("A subject is either a user or a guest.")

    @classmethod
    def for_user(cls, user_id: Any) -> "Subject":
        value = str(user_id).strip() if user_id is not None else ""
        if not value:
            raise ValidationError({"user_id": ["Identifiant utilisateur requis."]})
        return cls(user_id=value)

    @classmethod
    def for_guest(cls, payload: Any) -> "Subject":
        return cls(guest=validate_guest_info(payload))

    @property
    def registration_type(self) -> str:
        return "user" if self.user_id is not None else "guest"

    @property
    def identity_key(self) -> str:
        if self.guest is not None:
            return guest_identity_key(self.guest.email)
        return user_identity_key(self.user_id)


@dataclass(frozen=True)
class Actor:
    """The caller performing an operation, as resolved by the session provider."""

    user_id: Optional[str] = None
    role: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return (self.role or "").upper() == ADMIN_ROLE

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def owns(self, registration: Registration) -> bool:
        if registration.registration_type == "user":
            return self.user_id is not None and self.user_id == registration.user_id
        if not self.email or not registration.guest_email:
            return False
        return normalize_email(self.email) == registration.guest_email

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id="system", role=ADMIN_ROLE)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def user_identity_key(user_id: Any) -> str:
    return f"user:{str(user_id).strip()}"


def guest_identity_key(email: str) -> str:
    return f"guest:{normalize_email(email)}"


def _clean_text(
    payload: Dict[str, Any],
    key: str,
    errors: Dict[str, List[str]],
    *,
    required: bool,
    max_length: int,
    label: str,
) -> Optional[str]:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            errors.setdefault(key, []).append(f"{label} requis.")
        return None
    if not isinstance(value, str):
        errors.setdefault(key, []).append(f"{label} invalide.")
        return None
    cleaned = value.strip()
    if len(cleaned) > max_length:
        errors.setdefault(key, []).append(
            f"{label} trop long ({max_length} caractères maximum)."
        )
        return None
    return cleaned


def validate_guest_info(payload: Any) -> GuestInfo:
    if not isinstance(payload, dict):
        raise ValidationError({"guest_info": ["Informations invité requises (objet attendu)."]})

    errors: Dict[str, List[str]] = {}
    full_name = _clean_text(payload, "full_name", errors, required=True, max_length=100, label="Nom complet")
    email = _clean_text(payload, "email", errors, required=True, max_length=255, label="E-mail")
    if email is not None and not EMAIL_PATTERN.match(email):
        errors.setdefault("email", []).append("Adresse e-mail invalide.")
    phone = _clean_text(payload, "phone_number", errors, required=True, max_length=40, label="Téléphone")
    company = _clean_text(payload, "company", errors, required=False, max_length=100, label="Entreprise")
    notes = _clean_text(payload, "notes", errors, required=False, max_length=500, label="Notes")

    if errors or full_name is None or email is None or phone is None:
        raise ValidationError(errors)

    return GuestInfo(
        full_name=full_name,
        email=normalize_email(email),
        phone_number=phone,
        company=company,
        notes=notes,
    )
