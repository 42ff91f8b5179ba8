from enum import Enum
from typing import Optional

CONFIGURATION_ERROR_MESSAGE = "Authentication service or admin email is not configured."
INVALID_CREDENTIALS_MESSAGE = (
    "Login failed. Please check your credentials. "
    "The admin user may need to be created first."
)
ACCESS_DENIED_MESSAGE = "You are not authorized to view this page."


class AccessState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    UNAUTHORIZED = "unauthorized"
    AUTHORIZED = "authorized"


class SignInError(Exception):
    INVALID_CREDENTIALS = "invalid-credentials"
    OTHER = "other"

    def __init__(self, code: str, reason: str = ""):
        super().__init__(reason or code)
        self.code = code
        self.reason = reason

    @property
    def user_message(self) -> str:
        if self.code == self.INVALID_CREDENTIALS:
            return INVALID_CREDENTIALS_MESSAGE
        return f"Login failed: {self.reason or 'unexpected error'}"


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def resolve_access_state(
    user_email: Optional[str],
    admin_email: Optional[str],
    is_user_loading: bool = False,
) -> AccessState:
    if is_user_loading:
        return AccessState.LOADING

    resolved_email = normalize_email(user_email)
    if not resolved_email:
        return AccessState.UNAUTHENTICATED

    configured_admin = normalize_email(admin_email)
    if configured_admin and resolved_email == configured_admin:
        return AccessState.AUTHORIZED
    return AccessState.UNAUTHORIZED
