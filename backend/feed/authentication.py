"""
Bearer token authentication.

Tokens issued by services.issue_token are sent as:

    Authorization: Bearer <key>
"""
from rest_framework.authentication import TokenAuthentication


class BearerTokenAuthentication(TokenAuthentication):
    keyword = 'Bearer'
