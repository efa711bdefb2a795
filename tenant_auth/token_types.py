"""
Token kinds and their payloads.

Each kind carries exactly one payload shape. decode_payload() is the only
way claims become a payload object: it checks the `type` discriminator
against the expected kind and validates the payload shape, rejecting
anything it does not recognise.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Union


class TokenKind(Enum):
    """Token kinds; the value is the `type` claim written into the token."""

    ACCESS = "access-token"
    REFRESH = "refresh-token"
    VERIFICATION = "verification-token"
    FORGOT_PASSWORD = "forgot-password-token"
    MFA_AUTH_GATE = "mfa-auth-token"
    MFA_OTP = "mfa-otp-token"

    @property
    def is_opaque(self) -> bool:
        """Kinds that travel AES-wrapped in links and cookies."""
        return self in OPAQUE_KINDS


OPAQUE_KINDS = frozenset({
    TokenKind.VERIFICATION,
    TokenKind.FORGOT_PASSWORD,
    TokenKind.MFA_AUTH_GATE,
})


class MfaOtpType(Enum):
    """Delivery channel of an emailed/texted one-time code."""

    EMAIL = "EMAIL"
    SMS = "SMS"


class PayloadError(ValueError):
    """Claims do not match the payload shape of the expected kind."""


@dataclass(frozen=True)
class SessionTokenData:
    """Payload of access, refresh, verification, forgot-password and MFA gate tokens."""

    user_id: str
    email: str = ""
    session_id: str = ""

    def to_claims(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "email": self.email, "sessionId": self.session_id}

    @classmethod
    def from_claims(cls, data: Mapping[str, Any]) -> "SessionTokenData":
        user_id = _require_str(data, "userId", allow_empty=False)
        return cls(
            user_id=user_id,
            email=_require_str(data, "email"),
            session_id=_require_str(data, "sessionId"),
        )


@dataclass(frozen=True)
class MfaOtpData:
    """Payload of an MFA OTP token: the code itself, signed."""

    user_id: str
    type: MfaOtpType
    code: str

    def to_claims(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "type": self.type.value, "code": self.code}

    @classmethod
    def from_claims(cls, data: Mapping[str, Any]) -> "MfaOtpData":
        raw_type = _require_str(data, "type", allow_empty=False)
        try:
            otp_type = MfaOtpType(raw_type)
        except ValueError:
            raise PayloadError(f"Unknown OTP type {raw_type!r}")
        return cls(
            user_id=_require_str(data, "userId", allow_empty=False),
            type=otp_type,
            code=_require_str(data, "code", allow_empty=False),
        )


TokenPayload = Union[SessionTokenData, MfaOtpData]

PAYLOAD_TYPES = {
    TokenKind.ACCESS: SessionTokenData,
    TokenKind.REFRESH: SessionTokenData,
    TokenKind.VERIFICATION: SessionTokenData,
    TokenKind.FORGOT_PASSWORD: SessionTokenData,
    TokenKind.MFA_AUTH_GATE: SessionTokenData,
    TokenKind.MFA_OTP: MfaOtpData,
}


class TokenKindMismatch(PayloadError):
    """The token's `type` claim names a different kind than expected."""


def payload_type_for(kind: TokenKind):
    """Payload class for a kind; unknown kinds are rejected."""
    try:
        return PAYLOAD_TYPES[kind]
    except KeyError:
        raise PayloadError(f"No payload shape registered for {kind!r}")


def decode_payload(kind: TokenKind, claims: Mapping[str, Any]) -> TokenPayload:
    """
    Turn verified claims into the payload object for `kind`.

    Args:
        kind: Kind the caller expects
        claims: Decoded JWT claims

    Returns:
        Payload instance of the kind's registered type

    Raises:
        TokenKindMismatch: If the `type` claim is missing or names another kind
        PayloadError: If `data` does not have the kind's payload shape
    """
    raw_type = claims.get("type")
    try:
        claimed_kind = TokenKind(raw_type)
    except ValueError:
        raise TokenKindMismatch(f"Unknown token type {raw_type!r}")
    if claimed_kind is not kind:
        raise TokenKindMismatch(f"Expected {kind.value}, got {claimed_kind.value}")

    data = claims.get("data")
    if not isinstance(data, Mapping):
        raise PayloadError("Token data is missing or not an object")

    return payload_type_for(kind).from_claims(data)


def _require_str(data: Mapping[str, Any], key: str, allow_empty: bool = True) -> str:
    value = data.get(key, "" if allow_empty else None)
    if value is None and allow_empty:
        value = ""
    if not isinstance(value, str):
        raise PayloadError(f"Field {key!r} must be a string")
    if not allow_empty and not value:
        raise PayloadError(f"Field {key!r} must not be empty")
    return value
