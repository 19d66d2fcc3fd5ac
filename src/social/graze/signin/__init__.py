"""
Sign in with Apple - remote authentication service

This package implements the OAuth 2.0 authorization code flow for Sign in with Apple
and exposes it as an aiohttp service that issues authentication tickets.

Key Components:
- authentication: The framework-neutral remote authentication handler. It validates
  the callback state and correlation cookie, classifies provider errors, exchanges the
  authorization code and projects the Apple identity token into claims.
- app: Web application layer with request handlers and server configuration

Authentication Flow:
1. The user is redirected to Apple with a protected state parameter and a correlation
   cookie is set on the redirect.
2. Apple posts the callback to the service with either a code or an error.
3. The code is exchanged for tokens, the identity token becomes the user's claims and
   a ticket is stored in Redis.
4. The user is redirected to their destination with a signed auth token referencing
   the ticket.
"""
