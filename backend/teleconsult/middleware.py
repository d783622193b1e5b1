"""
teleconsult/middleware.py

Socket authentication. A browser cannot set an Authorization header on the
WebSocket handshake, so the SimpleJWT access token rides in the query
string:  ws/events/?token=<access>

    JWTAuthMiddlewareStack(URLRouter(...))

Without a token the session user from AuthMiddlewareStack is kept; a bad
or expired token leaves the socket anonymous.
"""

import logging
from urllib.parse import parse_qs

from channels.auth import AuthMiddlewareStack
from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import AccessToken

logger = logging.getLogger(__name__)


@database_sync_to_async
def user_for_token(raw_token):
    try:
        token = AccessToken(raw_token)
    except TokenError as exc:
        logger.info("[Auth] socket token rejected: %s", exc)
        return AnonymousUser()

    lookup = {api_settings.USER_ID_FIELD: token.get(api_settings.USER_ID_CLAIM)}
    user = get_user_model().objects.filter(is_active=True, **lookup).first()
    return user or AnonymousUser()


class JWTQueryAuthMiddleware(BaseMiddleware):

    async def __call__(self, scope, receive, send):
        qs = parse_qs(scope.get("query_string", b"").decode())
        raw_token = (qs.get("token") or [""])[0]
        if raw_token:
            scope = dict(scope, user=await user_for_token(raw_token))
        return await super().__call__(scope, receive, send)


def JWTAuthMiddlewareStack(inner):
    return AuthMiddlewareStack(JWTQueryAuthMiddleware(inner))
