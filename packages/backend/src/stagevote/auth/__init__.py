"""Authentication and authorization.

Accounts live with the society's identity provider, which issues signed
JWT access tokens. The API only verifies them:

- sub → the voter's user id (one vote per performance per sub)
- role → "admin" for committee members who manage events and voting
"""
