"""
Gmail and Google Calendar as an evidence signal source.

Uses a previously authorized OAuth token file (authorized_user JSON). Without one the
source reports itself unconfigured and returns no signals.
"""
import os
from datetime import date, datetime, timedelta
from typing import Any, List, Optional

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from loguru import logger

from errors import CollectorUnavailable
from normalize.models import EvidenceSignal
from normalize.util import normalize_calendar_event, normalize_gmail_message

SCOPES = [
    'https://www.googleapis.com/auth/gmail.readonly',
    'https://www.googleapis.com/auth/calendar.readonly',
]

MAX_MESSAGES_PER_QUERY = 100
MAX_EVENTS = 250


def _gmail_date(value: str) -> str:
    return value.replace('-', '/')


class GoogleWorkspaceSource:
    """Signal source backed by the Gmail and Calendar APIs."""

    def __init__(self, token_path: str):
        self.token_path = token_path
        self._creds: Optional[Credentials] = None
        self._gmail = None
        self._calendar = None

    @property
    def configured(self) -> bool:
        return bool(self.token_path) and os.path.exists(self.token_path)

    def _credentials(self) -> Credentials:
        if self._creds is not None and self._creds.valid:
            return self._creds
        try:
            creds = Credentials.from_authorized_user_file(self.token_path, SCOPES)
        except (OSError, ValueError, KeyError) as ex:
            raise CollectorUnavailable('google', f"invalid token file {self.token_path}: {ex}")
        if creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except GoogleAuthError as ex:
                raise CollectorUnavailable('google', f"token refresh failed: {ex}")
            with open(self.token_path, 'w', encoding='utf-8') as f:
                f.write(creds.to_json())
        if not creds.valid:
            raise CollectorUnavailable('google', 'credentials are invalid')
        self._creds = creds
        return creds

    def _service(self, name: str, version: str):
        return build(name, version, credentials=self._credentials(), cache_discovery=False)

    def _list_messages(self, gmail: Any, query: str) -> List[dict]:
        response = gmail.users().messages().list(userId='me', q=query, maxResults=MAX_MESSAGES_PER_QUERY).execute()
        return response.get('messages', [])

    def list_emails(self, start: str, end: str) -> List[EvidenceSignal]:
        """Inbox and sent messages between start and end (inclusive)."""
        if not self.configured:
            return []
        before = (date.fromisoformat(end) + timedelta(days=1)).isoformat()
        signals: List[EvidenceSignal] = []
        try:
            if self._gmail is None:
                self._gmail = self._service('gmail', 'v1')
            for folder, is_sent in (('inbox', False), ('sent', True)):
                query = f"after:{_gmail_date(start)} before:{_gmail_date(before)} in:{folder}"
                for stub in self._list_messages(self._gmail, query):
                    msg = (
                        self._gmail.users()
                        .messages()
                        .get(userId='me', id=stub['id'], format='metadata', metadataHeaders=['From', 'To', 'Subject', 'Date'])
                        .execute()
                    )
                    signals.append(normalize_gmail_message(msg, is_sent, start))
        except (HttpError, httplib2.HttpLib2Error, GoogleAuthError, OSError) as ex:
            raise CollectorUnavailable('gmail', str(ex))
        logger.debug("gmail: {} messages between {} and {}", len(signals), start, end)
        return signals

    def list_calendar_events(self, start: str, end: str) -> List[EvidenceSignal]:
        """Timed, non-declined events between start and end (inclusive)."""
        if not self.configured:
            return []
        time_min = datetime.combine(date.fromisoformat(start), datetime.min.time()).astimezone().isoformat()
        time_max = datetime.combine(date.fromisoformat(end), datetime.max.time()).astimezone().isoformat()
        signals: List[EvidenceSignal] = []
        page_token = None
        try:
            if self._calendar is None:
                self._calendar = self._service('calendar', 'v3')
            while True:
                result = (
                    self._calendar.events()
                    .list(
                        calendarId='primary',
                        timeMin=time_min,
                        timeMax=time_max,
                        singleEvents=True,
                        orderBy='startTime',
                        maxResults=MAX_EVENTS,
                        pageToken=page_token,
                    )
                    .execute()
                )
                for item in result.get('items', []):
                    signal = normalize_calendar_event(item)
                    if signal is not None:
                        signals.append(signal)
                page_token = result.get('nextPageToken')
                if not page_token:
                    break
        except (HttpError, httplib2.HttpLib2Error, GoogleAuthError, OSError) as ex:
            raise CollectorUnavailable('calendar', str(ex))
        logger.debug("calendar: {} events between {} and {}", len(signals), start, end)
        return signals
