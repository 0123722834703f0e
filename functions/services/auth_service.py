"""
Authentication against Firebase Auth.

Account management and token checks go through `firebase_admin.auth`. Password sign-in
has no admin SDK equivalent, so it calls the Identity Toolkit REST API with the project's
web API key. Listeners registered on an AuthStateNotifier hear about sign-ins and sign-outs.
"""
import logging
import threading

import requests
from firebase_admin import auth

from logic.form_validation import email as email_rule, ensure_valid, min_length, required
from services.db_service import BackendClient, BackendError
from services.email_service import send_password_reset_email, send_verification_email
from services.secret_manager_service import access_secret_version
from services.user_service import create_user_profile

log = logging.getLogger(__name__)

SIGN_IN_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword"
REQUEST_TIMEOUT_SECONDS = 10

SIGNED_IN = 'SIGNED_IN'
SIGNED_OUT = 'SIGNED_OUT'

CREDENTIAL_RULES = {
    'email': [required("Email is required"), email_rule()],
    'password': [required("Password is required"), min_length(6, "Password must be at least 6 characters")],
}

_SIGN_IN_ERRORS = {
    'INVALID_LOGIN_CREDENTIALS': "Invalid email or password",
    'EMAIL_NOT_FOUND': "Invalid email or password",
    'INVALID_PASSWORD': "Invalid email or password",
    'USER_DISABLED': "This account has been disabled",
    'TOO_MANY_ATTEMPTS_TRY_LATER': "Too many attempts, please try again later",
}


class AuthError(Exception):
    def __init__(self, message: str, status: int = 401):
        super().__init__(message)
        self.status = status


class AuthStateNotifier:
    """Registry of callbacks invoked with (event, user) on sign-in and sign-out."""

    def __init__(self):
        self._listeners = []
        self._lock = threading.Lock()

    def subscribe(self, listener):
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def notify(self, event: str, user: dict | None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, user)
            except Exception as e:
                log.error(f"Auth listener failed on {event}: {e}")


def get_assurance_level(claims: dict) -> dict:
    """
    Authenticator assurance levels for a decoded ID token.
    `aal2` means the session was established with a second factor; `next_level` is `aal2`
    whenever the account has a second factor enrolled.
    """
    firebase_claims = claims.get('firebase') or {}
    current_level = 'aal2' if firebase_claims.get('sign_in_second_factor') else 'aal1'
    next_level = 'aal2' if claims.get('mfa_enrolled') or current_level == 'aal2' else 'aal1'
    return {
        'current_level': current_level,
        'next_level': next_level,
        'requires_mfa': next_level == 'aal2' and next_level != current_level,
    }


def bearer_token(headers) -> str | None:
    header = headers.get('Authorization') or ''
    if not header.startswith('Bearer '):
        return None
    return header[len('Bearer '):].strip() or None


def get_session(id_token: str) -> dict:
    """Verifies an ID token and returns the signed-in user. Raises AuthError when it's not valid."""
    if not id_token:
        raise AuthError("Missing bearer token")
    try:
        claims = auth.verify_id_token(id_token, check_revoked=True)
    except auth.UserDisabledError:
        raise AuthError("This account has been disabled")
    except auth.InvalidIdTokenError as e:
        log.warning(f"Rejected ID token: {e}")
        raise AuthError("Session expired, please sign in again")
    except auth.CertificateFetchError as e:
        log.error(f"Could not fetch token signing certificates: {e}")
        raise BackendError("Authentication service unavailable")
    return {
        'uid': claims['uid'],
        'email': claims.get('email'),
        'email_verified': claims.get('email_verified', False),
        **get_assurance_level(claims),
    }


def sign_up(client: BackendClient, email: str, password: str, template_env, full_name: str = None) -> dict:
    ensure_valid({'email': email, 'password': password}, CREDENTIAL_RULES)
    try:
        user = auth.create_user(email=email, password=password, display_name=full_name)
    except auth.EmailAlreadyExistsError:
        raise AuthError("An account with this email already exists", status=409)
    log.info(f"Created account {user.uid}.")

    try:
        create_user_profile(client, user.uid, email, full_name)
    except BackendError as e:
        log.error(f"Could not create profile for {user.uid}, removing the account: {e}")
        auth.delete_user(user.uid)
        raise
    try:
        link = auth.generate_email_verification_link(email)
        send_verification_email(email, link, template_env)
    except Exception as e:
        log.error(f"Could not send verification email to {email}: {e}")
    return {'uid': user.uid, 'email': email}


def sign_in(email: str, password: str, notifier: AuthStateNotifier = None) -> dict:
    """
    Password sign-in. Returns the session tokens and the MFA assurance check, or
    `requires_mfa` with the pending credential when a second factor must be completed first.
    """
    ensure_valid({'email': email, 'password': password}, CREDENTIAL_RULES)
    api_key = access_secret_version("FIREBASE_WEB_API_KEY")
    if not api_key:
        raise BackendError("Authentication is not configured")

    try:
        r = requests.post(
            SIGN_IN_URL,
            params={'key': api_key},
            json={'email': email, 'password': password, 'returnSecureToken': True},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        log.error(f"Sign-in request failed: {e}")
        raise BackendError("Authentication service unavailable")

    try:
        payload = r.json()
    except ValueError:
        payload = {}
    if r.status_code != 200:
        code = (payload.get('error') or {}).get('message', '')
        log.warning(f"Sign-in rejected for {email}: {code}")
        raise AuthError(_SIGN_IN_ERRORS.get(code.split(' ')[0], "Sign in failed"))

    if payload.get('mfaPendingCredential'):
        return {
            'requires_mfa': True,
            'mfa_pending_credential': payload['mfaPendingCredential'],
            'mfa_info': payload.get('mfaInfo', []),
        }

    try:
        claims = auth.verify_id_token(payload['idToken'])
    except (auth.InvalidIdTokenError, auth.UserDisabledError) as e:
        log.warning(f"Sign-in returned an unusable ID token for {email}: {e}")
        raise AuthError("Sign in failed")
    user = {'uid': payload['localId'], 'email': payload.get('email', email)}
    if notifier is not None:
        notifier.notify(SIGNED_IN, user)
    log.info(f"User {user['uid']} signed in.")
    return {
        'user': user,
        'id_token': payload['idToken'],
        'refresh_token': payload['refreshToken'],
        'expires_in': int(payload.get('expiresIn', 3600)),
        **get_assurance_level(claims),
    }


def sign_out(user: dict, notifier: AuthStateNotifier = None) -> None:
    """Revokes every refresh token of the user so existing sessions end."""
    auth.revoke_refresh_tokens(user['uid'])
    if notifier is not None:
        notifier.notify(SIGNED_OUT, user)
    log.info(f"User {user['uid']} signed out.")


def reset_password(email: str, template_env) -> bool:
    """
    Mails a password reset link. Unknown addresses are treated as success so the
    endpoint doesn't reveal which emails have accounts.
    """
    ensure_valid({'email': email}, {'email': CREDENTIAL_RULES['email']})
    try:
        link = auth.generate_password_reset_link(email)
    except auth.UserNotFoundError:
        log.warning(f"Password reset requested for unknown email {email}.")
        return True
    return send_password_reset_email(email, link, template_env)
