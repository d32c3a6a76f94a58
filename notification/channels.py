#!/usr/bin/env python3
"""
Notification Channels

One sender per delivery channel. Each sender resolves the recipients of a
notification (email address, device tokens, the user's feed) and delivers to
them, reporting per-recipient success in a DeliveryOutcome.

Partial failures never raise: a sender raises ChannelDeliveryError only when
nothing could be delivered. An empty recipient set is a vacuous success.

Providers sit behind MailTransport / PushTransport so the senders can be
exercised without network access.

Usage:
    from notification.channels import build_channel_senders

    senders = build_channel_senders(config.notifications, users, preferences)
    outcome = await senders['email'].deliver(record, recipients)
"""

import asyncio
import logging
import re
import smtplib
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence

import httpx

from notification.exceptions import ChannelDeliveryError, ConfigurationError
from notification.interfaces import MailTransport, PreferenceStore, PushTransport, UserStore
from notification.message_builder import NotificationMessageBuilder
from notification.models import Channel, DeliveryOutcome, NotificationPriority
from notification.preferences import PreferenceSnapshot

logger = logging.getLogger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push"
SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"

EXPO_TOKEN_PATTERN = re.compile(r'^(ExponentPushToken|ExpoPushToken)\[.+\]$')
DEVICE_NOT_REGISTERED = 'DeviceNotRegistered'


def _mask_email(email: str) -> str:
    """
    Mask email address for safe logging (PII protection).

    Shows only domain, e.g., "***@example.com"
    """
    if '@' not in email:
        return "***"
    _, domain = email.rsplit('@', 1)
    return f"***@{domain}"


def _mask_token(token: str) -> str:
    return f"{token[:22]}..." if len(token) > 22 else token


def is_valid_push_token(token: str) -> bool:
    return bool(token) and EXPO_TOKEN_PATTERN.match(token) is not None


def _chunks(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


# =============================================================================
# MAIL TRANSPORTS
# =============================================================================

class SmtpTransport(MailTransport):
    """SMTP with STARTTLS. smtplib is blocking, so sends run in a worker thread."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_email: str,
        from_name: str = "Finance Tracker",
        use_tls: bool = True,
        timeout: float = 60.0
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.use_tls = use_tls
        self.timeout = timeout

    def _build_message(self, to: str, subject: str, html_body: str, text: str) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['From'] = f'"{self.from_name}" <{self.from_email}>'
        msg['To'] = to
        msg['Subject'] = subject
        msg.attach(MIMEText(text, 'plain', 'utf-8'))
        msg.attach(MIMEText(html_body, 'html', 'utf-8'))
        return msg

    def _send_sync(self, to: str, subject: str, html_body: str, text: str) -> None:
        msg = self._build_message(to, subject, html_body, text)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        await asyncio.to_thread(self._send_sync, to, subject, html, text)
        logger.info(f"Email sent via SMTP to {_mask_email(to)}")


class SendGridTransport(MailTransport):
    """SendGrid v3 HTTP API."""

    name = "sendgrid"

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str = "Finance Tracker",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self._client = client
        self.timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        payload = {
            'personalizations': [{'to': [{'email': to}]}],
            'from': {'email': self.from_email, 'name': self.from_name},
            'subject': subject,
            'content': [
                {'type': 'text/plain', 'value': text},
                {'type': 'text/html', 'value': html},
            ],
        }
        response = await self._get_client().post(
            SENDGRID_SEND_URL,
            json=payload,
            headers={'Authorization': f'Bearer {self.api_key}'},
        )
        response.raise_for_status()
        logger.info(f"Email sent via SendGrid to {_mask_email(to)} ({response.status_code})")

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


class LoggingMailTransport(MailTransport):
    """Dry-run transport: logs instead of sending."""

    name = "dry-run"

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        logger.info(f"[DRY RUN] Email to {_mask_email(to)}: {subject}")
        logger.debug(f"[DRY RUN] Email body: {text[:200]}")


# =============================================================================
# PUSH TRANSPORTS
# =============================================================================

class ExpoPushTransport(PushTransport):
    """Expo push service (exp.host)."""

    name = "expo"

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: str = EXPO_PUSH_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip('/')
        self._client = client
        self.timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {
                'Accept': 'application/json',
                'Accept-Encoding': 'gzip, deflate',
                'Content-Type': 'application/json',
            }
            if self.access_token:
                headers['Authorization'] = f'Bearer {self.access_token}'
            self._client = httpx.AsyncClient(headers=headers, timeout=httpx.Timeout(self.timeout))
        return self._client

    async def send(self, messages: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        response = await self._get_client().post(f"{self.base_url}/send", json=list(messages))
        response.raise_for_status()
        tickets = response.json().get('data', [])
        if len(tickets) != len(messages):
            raise ChannelDeliveryError(
                f"Expo returned {len(tickets)} tickets for {len(messages)} messages",
                channel=Channel.PUSH.value,
            )
        return tickets

    async def get_receipts(self, receipt_ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        response = await self._get_client().post(
            f"{self.base_url}/getReceipts",
            json={'ids': list(receipt_ids)},
        )
        response.raise_for_status()
        return response.json().get('data', {})

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()


class LoggingPushTransport(PushTransport):
    """Dry-run transport: every message gets an ok ticket and no receipts."""

    name = "dry-run"

    async def send(self, messages: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        for message in messages:
            logger.info(f"[DRY RUN] Push to {_mask_token(message['to'])}: {message.get('title')}")
        return [{'status': 'ok', 'id': str(uuid.uuid4())} for _ in messages]

    async def get_receipts(self, receipt_ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        return {}


# =============================================================================
# CHANNEL SENDERS
# =============================================================================

class EmailRecipient(NamedTuple):
    address: str
    name: Optional[str] = None


class ChannelSender(ABC):
    """
    Abstract base class for all channel senders.

    The dispatcher only talks to this interface, so any sender can be
    substituted (tests use recording fakes).
    """

    @property
    @abstractmethod
    def channel_type(self) -> str:
        """Return the channel identifier (email, push, in_app)."""
        pass

    @abstractmethod
    async def resolve_recipients(self, notification, snapshot: PreferenceSnapshot) -> List[Any]:
        """
        Work out who receives this notification on this channel.

        Raises ChannelDeliveryError when the channel cannot be used at all.
        """
        pass

    @abstractmethod
    async def deliver(self, notification, recipients: Sequence[Any]) -> DeliveryOutcome:
        """Deliver to every recipient and report per-recipient results."""
        pass

    async def aclose(self) -> None:
        return None


class EmailSender(ChannelSender):
    """Renders the email template for the notification type and hands it to a MailTransport."""

    def __init__(self, users: UserStore, transport: MailTransport):
        self.users = users
        self.transport = transport

    @property
    def channel_type(self) -> str:
        return Channel.EMAIL.value

    async def resolve_recipients(self, notification, snapshot: PreferenceSnapshot) -> List[EmailRecipient]:
        user = await self.users.get(notification.user_id)
        if user is None or not user.email:
            raise ChannelDeliveryError(
                "User email not found",
                channel=self.channel_type,
                notification_id=notification.id,
                user_id=notification.user_id,
            )
        return [EmailRecipient(address=user.email, name=user.name)]

    async def deliver(self, notification, recipients: Sequence[EmailRecipient]) -> DeliveryOutcome:
        outcome = DeliveryOutcome(channel=self.channel_type)

        for recipient in recipients:
            content = NotificationMessageBuilder.build_email(notification, user_name=recipient.name)
            try:
                await self.transport.send(recipient.address, content.subject, content.html, content.text)
                outcome.record(recipient.address, True)
            except Exception as e:
                logger.error(
                    f"Failed to send email to {_mask_email(recipient.address)} "
                    f"via {self.transport.name}: {e}"
                )
                outcome.record(recipient.address, False, str(e))

        if not outcome.delivered:
            raise ChannelDeliveryError(
                f"Email transport failed: {'; '.join(outcome.errors.values())}",
                channel=self.channel_type,
                notification_id=notification.id,
                user_id=notification.user_id,
            )
        return outcome

    async def aclose(self) -> None:
        await self.transport.aclose()


class PushSender(ChannelSender):
    """
    Expo push delivery.

    Tokens come from the preference snapshot; tokens the provider reports as
    DeviceNotRegistered (in a ticket or a receipt) are deactivated through the
    preference store.
    """

    def __init__(
        self,
        transport: PushTransport,
        preferences: PreferenceStore,
        chunk_size: int = 100,
        fetch_receipts: bool = True,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.transport = transport
        self.preferences = preferences
        self.chunk_size = chunk_size
        self.fetch_receipts = fetch_receipts
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def channel_type(self) -> str:
        return Channel.PUSH.value

    async def resolve_recipients(self, notification, snapshot: PreferenceSnapshot) -> List[str]:
        tokens = snapshot.active_device_tokens()
        if not tokens:
            logger.info(f"No active device tokens for user {notification.user_id}")
            return []

        valid = [token for token in tokens if is_valid_push_token(token)]
        for token in tokens:
            if token not in valid:
                logger.warning(f"Skipping malformed push token {_mask_token(token)} for user {notification.user_id}")

        if not valid:
            raise ChannelDeliveryError(
                "No valid Expo push tokens",
                channel=self.channel_type,
                notification_id=notification.id,
                user_id=notification.user_id,
            )
        return valid

    def build_message(self, notification, token: str) -> Dict[str, Any]:
        priority = getattr(notification.priority, 'value', notification.priority)
        data = dict(notification.payload or {})
        data.update({
            'notificationId': str(notification.id),
            'type': getattr(notification.type, 'value', notification.type),
        })
        return {
            'to': token,
            'sound': 'default',
            'title': notification.title,
            'body': notification.message,
            'data': data,
            'priority': 'high' if priority in (NotificationPriority.HIGH.value, NotificationPriority.URGENT.value) else 'normal',
            'channelId': 'default',
        }

    async def _deactivate(self, notification, token: str) -> None:
        try:
            changed = await self.preferences.deactivate_device_token(notification.user_id, token, self._clock())
            if changed:
                logger.info(f"Deactivated unregistered push token {_mask_token(token)} for user {notification.user_id}")
        except Exception as e:
            logger.error(f"Failed to deactivate push token {_mask_token(token)}: {e}")

    async def deliver(self, notification, recipients: Sequence[str]) -> DeliveryOutcome:
        outcome = DeliveryOutcome(channel=self.channel_type)
        receipt_tokens: Dict[str, str] = {}

        for chunk in _chunks(list(recipients), self.chunk_size):
            messages = [self.build_message(notification, token) for token in chunk]
            try:
                tickets = await self.transport.send(messages)
            except Exception as e:
                logger.error(f"Push chunk of {len(chunk)} failed for user {notification.user_id}: {e}")
                for token in chunk:
                    outcome.record(token, False, str(e))
                continue

            for token, ticket in zip(chunk, tickets):
                if ticket.get('status') == 'ok':
                    outcome.record(token, True)
                    if ticket.get('id'):
                        receipt_tokens[ticket['id']] = token
                    continue

                error = (ticket.get('details') or {}).get('error') or ticket.get('message') or 'unknown error'
                outcome.record(token, False, error)
                logger.warning(f"Push ticket error for {_mask_token(token)}: {error}")
                if error == DEVICE_NOT_REGISTERED:
                    await self._deactivate(notification, token)

        if self.fetch_receipts and receipt_tokens:
            await self._check_receipts(notification, receipt_tokens, outcome)

        if not outcome.delivered:
            raise ChannelDeliveryError(
                f"Push delivery failed for all {len(outcome.results)} device(s)",
                channel=self.channel_type,
                notification_id=notification.id,
                user_id=notification.user_id,
            )
        return outcome

    async def _check_receipts(self, notification, receipt_tokens: Dict[str, str], outcome: DeliveryOutcome) -> None:
        """Receipt ids map back to the token of the ticket that produced them."""
        try:
            receipts = await self.transport.get_receipts(list(receipt_tokens))
        except Exception as e:
            logger.error(f"Error fetching push receipts: {e}")
            return

        for receipt_id, receipt in receipts.items():
            token = receipt_tokens.get(receipt_id)
            if token is None or receipt.get('status') != 'error':
                continue
            error = (receipt.get('details') or {}).get('error') or receipt.get('message') or 'unknown error'
            logger.warning(f"Push receipt error for {_mask_token(token)}: {error}")
            outcome.record(token, False, error)
            if error == DEVICE_NOT_REGISTERED:
                await self._deactivate(notification, token)

    async def aclose(self) -> None:
        await self.transport.aclose()


class InAppSender(ChannelSender):
    """The stored record is the in-app notification; delivery only marks the channel."""

    @property
    def channel_type(self) -> str:
        return Channel.IN_APP.value

    async def resolve_recipients(self, notification, snapshot: PreferenceSnapshot) -> List[str]:
        return [str(notification.user_id)]

    async def deliver(self, notification, recipients: Sequence[str]) -> DeliveryOutcome:
        outcome = DeliveryOutcome(channel=self.channel_type)
        for recipient in recipients:
            outcome.record(recipient, True)
        logger.debug(f"In-app notification available for user {notification.user_id}")
        return outcome


# =============================================================================
# FACTORIES
# =============================================================================

def build_mail_transport(email_config, dry_run: bool = False) -> MailTransport:
    """
    Pick the mail transport from configuration.

    SendGrid when an API key is set, SMTP when host and credentials are set.
    Anything else is a startup error unless running dry.
    """
    if dry_run:
        return LoggingMailTransport()

    if email_config.sendgrid_api_key:
        if not email_config.from_email:
            raise ConfigurationError("FROM_EMAIL is required for SendGrid")
        return SendGridTransport(
            api_key=email_config.sendgrid_api_key,
            from_email=email_config.from_email,
            from_name=email_config.from_name,
        )

    if email_config.smtp_host and email_config.smtp_username and email_config.smtp_password:
        return SmtpTransport(
            host=email_config.smtp_host,
            port=email_config.smtp_port,
            username=email_config.smtp_username,
            password=email_config.smtp_password,
            from_email=email_config.from_email or email_config.smtp_username,
            from_name=email_config.from_name,
            use_tls=email_config.smtp_use_tls,
        )

    raise ConfigurationError(
        "Email not configured - set SENDGRID_API_KEY or SMTP_HOST/SMTP_USERNAME/SMTP_PASSWORD"
    )


def build_push_transport(push_config, dry_run: bool = False) -> PushTransport:
    if dry_run:
        return LoggingPushTransport()
    return ExpoPushTransport(access_token=push_config.expo_access_token, base_url=push_config.base_url)


def build_channel_senders(
    notifications_config,
    users: UserStore,
    preferences: PreferenceStore
) -> Dict[str, ChannelSender]:
    """Production senders keyed by channel."""
    dry_run = notifications_config.dry_run
    mail = build_mail_transport(notifications_config.email, dry_run=dry_run)
    push = build_push_transport(notifications_config.push, dry_run=dry_run)
    logger.info(f"Channel senders ready (mail={mail.name}, push={push.name}, dry_run={dry_run})")

    return {
        Channel.EMAIL.value: EmailSender(users, mail),
        Channel.PUSH.value: PushSender(
            push,
            preferences,
            chunk_size=notifications_config.push.chunk_size,
            fetch_receipts=notifications_config.push.fetch_receipts,
        ),
        Channel.IN_APP.value: InAppSender(),
    }
