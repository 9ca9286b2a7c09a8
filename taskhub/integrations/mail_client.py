"""IMAP reader and SMTP sender for the e-mail source."""

from __future__ import annotations

import email
import imaplib
import logging
import re
import smtplib
import ssl
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from email import policy
from email.message import EmailMessage
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any, Generator, Iterable, Optional

from taskhub.errors import AuthError, SourceConnectionError, SourceError
from taskhub.models.task import SourceType
from taskhub.utils.timefmt import ensure_utc, utcnow

logger = logging.getLogger(__name__)

_SOURCE = SourceType.EMAIL.value

ARCHIVE_MAILBOXES = ("Archive", "[Gmail]/All Mail", "Archives", "INBOX.Archive")
_HEADER_FIELDS = "MESSAGE-ID SUBJECT FROM TO DATE"

_UID_RE = re.compile(rb"UID (\d+)")
_FLAGS_RE = re.compile(rb"FLAGS \(([^)]*)\)")


@dataclass
class Envelope:
    uid: int
    message_id: str = ""
    subject: str = ""
    sender: str = ""
    to: list[str] = field(default_factory=list)
    date: Optional[datetime] = None
    flags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat() if self.date else ""
        return data


@dataclass
class Attachment:
    filename: str
    mime_type: str
    size: int


@dataclass
class ParsedMessage:
    envelope: Envelope
    text_body: str = ""
    html_body: str = ""
    attachments: list[Attachment] = field(default_factory=list)


# -- parsing helpers -----------------------------------------------------------

def imap_quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def imap_date(value: datetime) -> str:
    # IMAP wants English month abbreviations regardless of locale
    months = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
    return f"{value.day:02d}-{months[value.month - 1]}-{value.year}"


def envelope_from_headers(uid: int, flags: list[str], msg: email.message.Message) -> Envelope:
    date = None
    if msg.get("Date"):
        try:
            date = ensure_utc(parsedate_to_datetime(str(msg["Date"])))
        except (TypeError, ValueError):
            date = None
    return Envelope(
        uid=uid,
        message_id=str(msg.get("Message-ID", "")).strip().strip("<>"),
        subject=str(msg.get("Subject", "")),
        sender=str(msg.get("From", "")),
        to=[addr for _, addr in getaddresses([str(v) for v in msg.get_all("To", [])]) if addr],
        date=date,
        flags=flags,
    )


def parse_fetch_response(data: Iterable[Any]) -> list[tuple[int, list[str], bytes]]:
    """Split an imaplib FETCH response into ``(uid, flags, literal)`` triples.

    Servers may send FLAGS before or after the literal, so the trailing
    bytes element following each literal is inspected as well.
    """
    items = list(data)
    out: list[tuple[int, list[str], bytes]] = []
    for i, item in enumerate(items):
        if not isinstance(item, tuple) or len(item) < 2:
            continue
        meta = item[0]
        trailer = items[i + 1] if i + 1 < len(items) and isinstance(items[i + 1], bytes) else b""
        uid_match = _UID_RE.search(meta) or _UID_RE.search(trailer)
        if not uid_match:
            continue
        flags_match = _FLAGS_RE.search(meta) or _FLAGS_RE.search(trailer)
        flags = flags_match.group(1).decode().split() if flags_match else []
        out.append((int(uid_match.group(1)), flags, item[1]))
    return out


def parse_message(uid: int, flags: list[str], raw: bytes) -> ParsedMessage:
    msg = email.message_from_bytes(raw, policy=policy.default)
    parsed = ParsedMessage(envelope=envelope_from_headers(uid, flags, msg))
    if isinstance(msg, EmailMessage):
        text_part = msg.get_body(preferencelist=("plain",))
        html_part = msg.get_body(preferencelist=("html",))
        if text_part is not None:
            parsed.text_body = text_part.get_content()
        if html_part is not None:
            parsed.html_body = html_part.get_content()
        for part in msg.iter_attachments():
            payload = part.get_payload(decode=True) or b""
            parsed.attachments.append(Attachment(
                filename=part.get_filename() or "(unnamed)",
                mime_type=part.get_content_type(),
                size=len(payload),
            ))
    return parsed


# -- IMAP ----------------------------------------------------------------------

class IMAPClient:
    """Handles IMAP authentication and message access, one connection per operation."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def connect(self) -> imaplib.IMAP4:
        """Open an authenticated connection."""
        try:
            if self.use_tls:
                conn = imaplib.IMAP4_SSL(self.host, self.port, timeout=self.timeout)
            else:
                conn = imaplib.IMAP4(self.host, self.port, timeout=self.timeout)
                conn.starttls(ssl_context=ssl.create_default_context())
        except (OSError, imaplib.IMAP4.error) as e:
            raise SourceConnectionError(_SOURCE, f"connecting to {self.host}:{self.port}: {e}") from e

        try:
            conn.login(self.username, self._password)
        except imaplib.IMAP4.error as e:
            logger.error(f"IMAP authentication failed for {self.host}")
            _safe_logout(conn)
            raise AuthError(_SOURCE, f"login to {self.host} rejected") from e
        return conn

    @contextmanager
    def session(self, mailbox: str = "INBOX", readonly: bool = True) -> Generator[imaplib.IMAP4, None, None]:
        conn = self.connect()
        try:
            status, _ = conn.select(imap_quote(mailbox), readonly=readonly)
            if status != "OK":
                raise SourceError(_SOURCE, f"selecting {mailbox} failed")
            yield conn
        except (OSError, imaplib.IMAP4.abort) as e:
            raise SourceConnectionError(_SOURCE, f"IMAP session to {self.host} dropped: {e}") from e
        except imaplib.IMAP4.error as e:
            raise SourceError(_SOURCE, f"IMAP command failed: {e}") from e
        finally:
            _safe_logout(conn)

    def validate(self) -> str:
        with self.session():
            pass
        return self.username

    def fetch_envelopes(self, limit: int = 100, since_days: int = 7) -> list[Envelope]:
        """Envelopes of the most recent ``limit`` messages of the last ``since_days`` days, newest first."""
        since = imap_date(utcnow() - timedelta(days=since_days))
        with self.session() as conn:
            uids = _uid_search(conn, "SINCE", since)
            return _fetch_envelopes(conn, uids[-limit:] if limit > 0 else uids)

    def search(self, query: str, limit: int = 50) -> list[Envelope]:
        with self.session() as conn:
            uids = _uid_search(conn, "TEXT", imap_quote(query))
            return _fetch_envelopes(conn, uids[-limit:] if limit > 0 else uids)

    def fetch_message(self, uid: int) -> ParsedMessage:
        with self.session() as conn:
            status, data = conn.uid("FETCH", str(uid), "(UID FLAGS BODY.PEEK[])")
            if status != "OK":
                raise SourceError(_SOURCE, f"fetching message {uid} failed")
            parsed = parse_fetch_response(data or [])
        if not parsed:
            raise SourceError(_SOURCE, f"message {uid} not found")
        return parse_message(*parsed[0])

    def set_flags(self, uid: int, flags: list[str], add: bool) -> None:
        op = "+FLAGS" if add else "-FLAGS"
        with self.session(readonly=False) as conn:
            status, _ = conn.uid("STORE", str(uid), op, f"({' '.join(flags)})")
            if status != "OK":
                raise SourceError(_SOURCE, f"{op} {' '.join(flags)} on message {uid} failed")

    def move_to_archive(self, uid: int) -> str:
        """Copy into the first existing archive mailbox and expunge; else just mark deleted."""
        with self.session(readonly=False) as conn:
            target = ""
            for mailbox in ARCHIVE_MAILBOXES:
                status, _ = conn.uid("COPY", str(uid), imap_quote(mailbox))
                if status == "OK":
                    target = mailbox
                    break
            conn.uid("STORE", str(uid), "+FLAGS", "(\\Deleted)")
            if target:
                conn.expunge()
        if not target:
            logger.info(f"No archive mailbox found; message {uid} marked \\Deleted")
        return target


def _uid_search(conn: imaplib.IMAP4, *criteria: str) -> list[int]:
    status, data = conn.uid("SEARCH", None, *criteria)
    if status != "OK":
        raise SourceError(_SOURCE, f"IMAP search {' '.join(criteria)} failed")
    if not data or not data[0]:
        return []
    return sorted(int(u) for u in data[0].split())


def _fetch_envelopes(conn: imaplib.IMAP4, uids: list[int]) -> list[Envelope]:
    if not uids:
        return []
    uid_set = ",".join(str(u) for u in uids)
    status, data = conn.uid("FETCH", uid_set, f"(UID FLAGS BODY.PEEK[HEADER.FIELDS ({_HEADER_FIELDS})])")
    if status != "OK":
        raise SourceError(_SOURCE, "fetching envelopes failed")
    envelopes = [
        envelope_from_headers(uid, flags, email.message_from_bytes(raw, policy=policy.default))
        for uid, flags, raw in parse_fetch_response(data or [])
    ]
    envelopes.sort(key=lambda e: e.uid, reverse=True)
    return envelopes


def _safe_logout(conn: imaplib.IMAP4) -> None:
    try:
        conn.logout()
    except (OSError, imaplib.IMAP4.error) as e:
        logger.debug(f"IMAP logout failed: {e}")


# -- SMTP ----------------------------------------------------------------------

@dataclass
class SMTPConfig:
    host: str
    port: int
    username: str
    password: str = field(repr=False, default="")
    use_tls: bool = True
    timeout: float = 30.0


def build_reply(original: ParsedMessage, from_addr: str, body: str) -> EmailMessage:
    subject = original.envelope.subject
    if not subject.lower().startswith("re:"):
        subject = f"Re: {subject}"
    msg = EmailMessage()
    msg["From"] = from_addr
    msg["To"] = original.envelope.sender
    msg["Subject"] = subject
    if original.envelope.message_id:
        msg["In-Reply-To"] = f"<{original.envelope.message_id}>"
        msg["References"] = f"<{original.envelope.message_id}>"
    msg.set_content(body)
    return msg


class SMTPSender:
    def __init__(self, config: SMTPConfig):
        self.config = config

    def send(self, msg: EmailMessage) -> None:
        cfg = self.config
        try:
            if cfg.use_tls:
                server = smtplib.SMTP_SSL(cfg.host, cfg.port, timeout=cfg.timeout)
            else:
                server = smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout)
                server.starttls(context=ssl.create_default_context())
            with server:
                server.login(cfg.username, cfg.password)
                server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            raise AuthError(_SOURCE, f"SMTP login to {cfg.host} rejected") from e
        except (smtplib.SMTPException, OSError) as e:
            raise SourceConnectionError(_SOURCE, f"sending mail via {cfg.host}: {e}") from e
        logger.info(f"Sent reply via {cfg.host}")
