# accounts/authentication.py
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError


def user_from_raw_token(raw: str | None):
    """
    Resolve an access token string to a user, or None. Used by plain Django
    views (the event stream) that sit outside the DRF request cycle, where
    EventSource clients pass the token as ?token=<access>.
    """
    if not raw:
        return None
    auth = JWTAuthentication()
    try:
        validated = auth.get_validated_token(raw)
        return auth.get_user(validated)
    except (InvalidToken, TokenError, AuthenticationFailed):
        return None
