"""
Remote authentication core for Sign in with Apple.

AppleAuthenticationHandler (handler.py) is the entry point. Everything it needs is
carried by AppleAuthenticationOptions (options.py), and its extension points are the
hooks in events.py.
"""
