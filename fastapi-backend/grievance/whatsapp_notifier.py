"""
WhatsApp integration for worker assignment notices and proof-of-completion media.

Messages go out through the Twilio Messages REST API; inbound worker replies
arrive on ``/whatsapp/webhook`` and their media is fetched back from Twilio
with the same account credentials.
"""
import base64
import hashlib
import hmac
import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple

import httpx

from .config import Settings
from .errors import ExternalServiceDegraded
from .metrics import NOTIFICATION_FAILURES

logger = logging.getLogger("grievance.whatsapp_notifier")

_WHATSAPP_MAX = 1600


def normalize_phone(raw: Optional[str], default_country_code: str = "91") -> Optional[str]:
    """Canonicalize a phone number to ``+<country><number>``.

    Accepts Twilio's ``whatsapp:+91...`` addresses as well as bare local
    numbers (which get the default country code).
    """
    if not raw:
        return None
    value = raw.strip()
    if value.lower().startswith("whatsapp:"):
        value = value.split(":", 1)[1]
    digits = re.sub(r"\D", "", value)
    if not digits:
        return None
    if value.startswith("+"):
        return f"+{digits}"
    if digits.startswith("0"):
        digits = digits.lstrip("0")
    if len(digits) == 10:
        return f"+{default_country_code}{digits}"
    return f"+{digits}"


def phone_candidates(raw: Optional[str], default_country_code: str = "91") -> List[str]:
    """Spellings a stored worker phone might use for the same number."""
    canonical = normalize_phone(raw, default_country_code)
    if not canonical:
        return []
    digits = canonical.lstrip("+")
    candidates = [canonical, digits]
    if digits.startswith(default_country_code) and len(digits) > 10:
        local = digits[len(default_country_code):]
        candidates.extend([local, f"0{local}"])
    return list(dict.fromkeys(candidates))


def format_assignment_message(complaint, worker) -> str:
    lines: Iterable[str] = (
        f"New complaint assigned to you, {worker.name}",
        f"Complaint: #{complaint.id} ({complaint.type})",
        f"Hostel: {complaint.hostel_name}",
        f"Floor: {complaint.floor_no or '-'}",
        f"Room: {complaint.room_no}",
        f"Student phone: {complaint.phone_number or '-'}",
        f"Issue: {complaint.description}",
        "",
        f"When done, reply with a photo and the caption #{complaint.id}.",
    )
    return "\n".join(lines)[:_WHATSAPP_MAX]


def compute_twilio_signature(auth_token: str, url: str, params: Sequence[Tuple[str, str]]) -> str:
    """``X-Twilio-Signature`` for a form POST.

    HMAC-SHA1 keyed by the auth token over the full webhook URL followed by
    every form field as ``name + value``, sorted by name.
    """
    payload = url + "".join(f"{name}{value}" for name, value in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def is_valid_twilio_signature(
    auth_token: Optional[str],
    url: str,
    params: Sequence[Tuple[str, str]],
    signature: Optional[str],
) -> bool:
    if not auth_token or not signature:
        return False
    expected = compute_twilio_signature(auth_token, url, params)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii", "ignore"))


class WhatsAppNotifier:
    """Sends WhatsApp messages and downloads inbound media via Twilio."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.account_sid = settings.twilio_account_sid
        self.auth_token = settings.twilio_auth_token
        self.sender = settings.twilio_whatsapp_from
        self.api_base = settings.twilio_api_base.rstrip("/")
        self.timeout = settings.messaging_timeout_seconds
        self.country_code = settings.default_country_code
        self._transport = transport
        self.enabled = bool(self.account_sid and self.auth_token and self.sender)
        if not self.enabled:
            logger.warning("Twilio WhatsApp credentials not configured. WhatsApp notifications disabled.")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            auth=(self.account_sid or "", self.auth_token or ""),
            transport=self._transport,
            follow_redirects=True,
        )

    @staticmethod
    def _address(phone: str) -> str:
        return phone if phone.startswith("whatsapp:") else f"whatsapp:{phone}"

    async def send_message(self, to_phone: str, body: str) -> bool:
        """Send a free-form WhatsApp message. Returns False instead of raising."""
        if not self.enabled:
            logger.debug("WhatsApp disabled; dropping message to %s", to_phone)
            return False

        recipient = normalize_phone(to_phone, self.country_code)
        if not recipient:
            logger.error("Cannot send WhatsApp message: invalid phone %r", to_phone)
            NOTIFICATION_FAILURES.labels(channel="whatsapp").inc()
            return False

        url = f"{self.api_base}/Accounts/{self.account_sid}/Messages.json"
        data = {
            "From": self._address(self.sender),
            "To": self._address(recipient),
            "Body": body[:_WHATSAPP_MAX],
        }
        try:
            async with self._client() as client:
                response = await client.post(url, data=data)
        except httpx.HTTPError as e:
            logger.error("Failed to send WhatsApp message to %s: %s", recipient, e)
            NOTIFICATION_FAILURES.labels(channel="whatsapp").inc()
            return False

        if response.status_code >= 400:
            logger.error(
                "Twilio rejected WhatsApp message to %s: %s %s",
                recipient,
                response.status_code,
                response.text[:200],
            )
            NOTIFICATION_FAILURES.labels(channel="whatsapp").inc()
            return False

        logger.info("Sent WhatsApp message to %s (sid=%s)", recipient, response.json().get("sid"))
        return True

    async def send_assignment_notice(self, worker, complaint) -> bool:
        return await self.send_message(worker.phone, format_assignment_message(complaint, worker))

    def is_trusted_media_url(self, media_url: Optional[str]) -> bool:
        try:
            url = httpx.URL(media_url or "")
        except httpx.InvalidURL:
            return False
        base = httpx.URL(self.api_base)
        return url.scheme == base.scheme and url.host == base.host and url.port == base.port

    async def fetch_media(self, media_url: str) -> bytes:
        """Download inbound media; Twilio media URLs require account auth.

        Only URLs on the Twilio API host are fetched, so the account
        credentials are never sent anywhere else. httpx drops the
        Authorization header when Twilio redirects to its media CDN.
        """
        if not self.is_trusted_media_url(media_url):
            raise ExternalServiceDegraded(f"Refusing to fetch media from untrusted URL {media_url}")
        try:
            async with self._client() as client:
                response = await client.get(media_url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceDegraded(f"Failed to fetch media {media_url}: {e}") from e
        return response.content


__all__ = [
    "WhatsAppNotifier",
    "compute_twilio_signature",
    "is_valid_twilio_signature",
    "normalize_phone",
    "phone_candidates",
    "format_assignment_message",
]
