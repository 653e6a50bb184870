"""
Storefront Backend — Middleware Package
=========================================

Middleware Chain (order matters!):
    Request → [Security Headers] → [CORS] → [Request ID] → [Access Log]
            → [Input Sanitizer] → [Rate Limit] → [Error Handler] → Route

    Why this order:
    1. Security headers outermost: every response gets them, even 429s
    2. Request ID before logging so the access line carries it
    3. Sanitizer before the rate limiter and routes: handlers never see null bytes
    4. Error handler innermost: it is the boundary for everything routes raise
"""
