"""
Web application hosting Sign in with Apple.

- server: application factory, middlewares and shared resource lifecycle
- config: settings and AppKeys
- handlers: challenge, callback and internal API routes
- tickets: Redis store of issued authentication tickets
- metrics: metrics client abstraction
"""
