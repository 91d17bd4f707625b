"""Challenge page detection.

Decides whether a response is an anti-bot interstitial instead of the real
product page. Checks run in a fixed order and the first match wins:

1. Structured product data present: real content, never a challenge.
2. Any known challenge marker present: challenge.
3. 403/503 with a tiny body or no ``<body>`` element: challenge.
4. Otherwise: real content.

Rule 1 comes first so that pages which merely load assets from a CDN whose
name overlaps a challenge vendor are not flagged.
"""

CONTENT_MARKER = "application/ld+json"

# Cloudflare interstitial titles, widget ids, script paths and cookie names
VENDOR_CHALLENGE_MARKERS: tuple[str, ...] = (
    "just a moment...",
    "cf-browser-verification",
    "_cf_chl_opt",
    "checking your browser",
    "ray id:",
    "cf-challenge",
    "__cf_bm",
    "/cdn-cgi/challenge-platform/",
)

GENERIC_CHALLENGE_MARKERS: tuple[str, ...] = (
    "bot detected",
    "please verify you are a human",
    "verify you are human",
    "enable javascript and cookies",
    "pardon our interruption",
)

# Interactive widgets a headless browser cannot get past on its own
CAPTCHA_WIDGET_MARKERS: tuple[str, ...] = (
    "g-recaptcha",
    "h-captcha",
    "cf-turnstile",
    "captcha-container",
    "recaptcha-token",
    "hcaptcha-response",
)

BLOCKED_STATUSES = frozenset({403, 503})
MIN_CONTENT_LENGTH = 5000


def is_challenge_page(status: int, body: str) -> bool:
    """Return True if the response looks like a bot challenge.

    Args:
        status: HTTP status code (use 200 for browser-rendered HTML)
        body: Response body or rendered page HTML
    """
    lowered = body.lower()

    if CONTENT_MARKER in lowered:
        return False

    if any(marker in lowered for marker in VENDOR_CHALLENGE_MARKERS):
        return True
    if any(marker in lowered for marker in GENERIC_CHALLENGE_MARKERS):
        return True

    if status in BLOCKED_STATUSES:
        return len(body) < MIN_CONTENT_LENGTH or "<body" not in lowered

    return False


def has_captcha_widget(html: str) -> bool:
    """Return True if the page embeds an interactive CAPTCHA widget."""
    lowered = html.lower()
    return any(marker in lowered for marker in CAPTCHA_WIDGET_MARKERS)


def is_still_challenged(html: str) -> bool:
    """Classify browser-rendered HTML, which has no status code of its own."""
    if CONTENT_MARKER in html.lower():
        return False
    return is_challenge_page(200, html) or has_captcha_widget(html)
