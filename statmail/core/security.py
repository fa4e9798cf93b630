import hashlib
import hmac
from urllib.parse import quote, urlencode

from statmail.config import Settings, get_settings


def _secret(settings: Settings | None) -> bytes:
    return (settings or get_settings()).secret_key.encode()


def generate_unsubscribe_token(
    domain: str,
    cadence: str,
    email: str,
    settings: Settings | None = None,
) -> str:
    """Generate HMAC token for a report unsubscribe link."""
    message = f"{domain}:{cadence}:{email.lower()}".encode()
    return hmac.new(_secret(settings), message, hashlib.sha256).hexdigest()[:32]


def verify_unsubscribe_token(
    domain: str,
    cadence: str,
    email: str,
    token: str,
    settings: Settings | None = None,
) -> bool:
    """Verify unsubscribe token matches site, cadence and email."""
    expected = generate_unsubscribe_token(domain, cadence, email, settings)
    return hmac.compare_digest(expected, token)


def build_unsubscribe_link(
    domain: str,
    cadence: str,
    email: str,
    settings: Settings | None = None,
) -> str:
    """Build the per-recipient unsubscribe URL for a report email.

    The link embeds the site's public identifier, the cadence name and the
    recipient address; the unsubscribe flow itself lives elsewhere.
    """
    settings = settings or get_settings()
    token = generate_unsubscribe_token(domain, cadence, email, settings)
    query = urlencode({"email": email, "token": token})
    return (
        f"{settings.base_url}/sites/{quote(domain, safe='')}/{cadence}-report/unsubscribe?{query}"
    )
