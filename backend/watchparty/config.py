import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")

# "host": only the host may load videos or change the playback rate.
# "open": every participant may drive everything.
CONTROL_POLICY = os.getenv("WATCHPARTY_CONTROL_POLICY", "host").lower()

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "5"))

COMMENTS_INSTANCES = [
    url.strip().rstrip("/")
    for url in os.getenv(
        "COMMENTS_INSTANCES",
        "https://inv.nadeko.net,https://invidious.nerdvpn.de,https://yewtu.be,https://invidious.privacyredirect.com",
    ).split(",")
    if url.strip()
]
COMMENTS_CACHE_TTL = int(os.getenv("COMMENTS_CACHE_TTL", "300"))
