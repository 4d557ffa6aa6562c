"""
Identity Bridge
===============

Maps a human-chosen username to a principal and issues a bearer token for
it.

    issue_token(username, display_name, is_registration) -> TokenGrant

REGISTRATION:
1. Validate and normalize the username (lowercase copy for lookups only)
2. Look the normalized name up; taken -> UsernameTaken
3. Create the auth user and the Profile in ONE transaction
4. Issue a token

LOGIN:
1. Validate and normalize
2. Look the normalized name up; missing -> PrincipalNotFound (no writes)
3. Touch last_active_at / last_login_at
4. Issue a token

CONCURRENCY:
------------
Two registrations of "Foo" and "foo" at the same moment can both pass
step 2. The UNIQUE constraint on Profile.username_lower rejects the second
insert with IntegrityError; we map that to the same UsernameTaken error,
and the surrounding transaction rolls back the auth user created in the
same step.

TOKENS:
-------
Each call issues exactly one token. Any token previously issued to the
principal is revoked, so only the latest one authenticates.
"""

import logging
from typing import NamedTuple

from django.contrib.auth.models import User
from django.db import transaction, IntegrityError
from django.utils import timezone
from rest_framework.authtoken.models import Token

from .exceptions import FeedError, InvalidArgument, UsernameTaken, PrincipalNotFound, InternalFailure
from .models import Profile, generate_id, USERNAME_MIN_LENGTH, USERNAME_MAX_LENGTH
from .queries import find_profile_by_username

logger = logging.getLogger(__name__)


class TokenGrant(NamedTuple):
    token: str
    principal_id: str


def clean_username(raw) -> str:
    """
    Coerce, trim and length-check a username.

    Raises InvalidArgument for empty, too short or too long names.
    """
    username = str(raw or '').strip()

    if len(username) == 0:
        raise InvalidArgument('Username is required and cannot be empty.')
    if len(username) < USERNAME_MIN_LENGTH:
        raise InvalidArgument(f'Username must be at least {USERNAME_MIN_LENGTH} characters long.')
    if len(username) > USERNAME_MAX_LENGTH:
        raise InvalidArgument(f'Username must be no more than {USERNAME_MAX_LENGTH} characters long.')

    return username


def register_principal(username: str, username_lower: str, display_name: str) -> Profile:
    if find_profile_by_username(username_lower) is not None:
        logger.warning(f"Username '{username}' already taken")
        raise UsernameTaken(f"Username '{username}' is already taken.")

    uid = generate_id()
    try:
        with transaction.atomic():
            user = User.objects.create_user(
                username=uid,
                first_name=display_name[:150]
            )
            profile = Profile.objects.create(
                uid=uid,
                user=user,
                username=username,
                username_lower=username_lower,
                display_name=display_name,
            )
    except IntegrityError:
        # Lost a race with a concurrent registration of the same name
        logger.warning(f"Username '{username}' claimed concurrently")
        raise UsernameTaken(f"Username '{username}' is already taken.")

    logger.info(f"Created principal {profile.uid} for username {username}")
    return profile


def login_principal(username: str, username_lower: str) -> Profile:
    profile = find_profile_by_username(username_lower)
    if profile is None:
        logger.warning(f"Username '{username}' not found")
        raise PrincipalNotFound(f"Username '{username}' not found.")

    now = timezone.now()
    Profile.objects.filter(uid=profile.uid).update(
        last_active_at=now,
        last_login_at=now
    )
    logger.info(f"Updated last login for {profile.uid}")
    return profile


def rotate_token(user: User) -> Token:
    """Revoke any existing token for user and issue a fresh one."""
    with transaction.atomic():
        Token.objects.filter(user=user).delete()
        return Token.objects.create(user=user)


def issue_token(username, display_name=None, is_registration: bool = False) -> TokenGrant:
    """
    Resolve (login) or create (registration) the principal for username
    and issue a bearer token for it.

    Raises:
        InvalidArgument: bad username
        UsernameTaken: registration with a name that is in use
        PrincipalNotFound: login with an unknown name
        InternalFailure: anything else, with the cause in .diagnostic
    """
    username = clean_username(username)
    username_lower = username.lower()
    display_name = str(display_name or '').strip() or username

    mode = 'Registration' if is_registration else 'Login'
    logger.info(f"{mode} request for username: {username}")

    try:
        if is_registration:
            profile = register_principal(username, username_lower, display_name)
        else:
            profile = login_principal(username, username_lower)

        token = rotate_token(profile.user)
        logger.info(f"Token issued for: {profile.uid}")

    except FeedError:
        raise
    except Exception as exc:
        logger.exception(f"Error issuing token for username {username}")
        raise InternalFailure(
            'Failed to issue token due to an unexpected server error.',
            diagnostic=str(exc)
        )

    return TokenGrant(token=token.key, principal_id=profile.uid)
