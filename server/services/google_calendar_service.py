"""
Google Calendar Service

Reads a user's Google Calendar meetings as commitments for the focus
scheduler. Supports per-user authentication via OAuth service.
"""

from datetime import datetime
from typing import List, Optional

import pytz
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from fastmcp.utilities.logging import get_logger
from services.errors import DataUnavailable
from services.focus_models import Commitment, parse_timestamp
from services.oauth_service import OAuthService


class GoogleCalendarService:
    """
    Service for Google Calendar API integration.

    Authentication and API failures are raised as DataUnavailable; an
    empty list always means the calendar really is empty.
    """

    def __init__(self, oauth_service: Optional[OAuthService] = None, timezone_name: str = "America/New_York"):
        """
        Initialize Google Calendar service.

        Args:
            oauth_service: OAuth service instance for user authentication
            timezone_name: Timezone events are converted into
        """
        self.logger = get_logger("GoogleCalendarService")
        self.oauth_service = oauth_service or OAuthService()
        self.tz = pytz.timezone(timezone_name)

    def get_service_for_user(self, user_id: str):
        """
        Get Google Calendar service for a specific user.

        Raises:
            DataUnavailable: If user is not authenticated
        """
        creds = self.oauth_service.get_user_credentials(user_id)
        if not creds or not creds.valid:
            raise DataUnavailable(
                "google calendar",
                f"user {user_id} is not authenticated. Please complete OAuth flow first."
            )

        return build('calendar', 'v3', credentials=creds)

    def fetch_meetings(self, user_id: str, range_start: datetime, range_end: datetime) -> List[Commitment]:
        """
        Get timed meetings overlapping a range.

        All-day events are skipped; they mark days rather than occupy hours.

        Args:
            user_id: User identifier for authentication
            range_start: Range start (timezone-aware)
            range_end: Range end (timezone-aware)

        Returns:
            Meetings sorted by start time
        """
        service = self.get_service_for_user(user_id)

        try:
            events = []
            page_token = None
            while True:
                events_result = service.events().list(
                    calendarId='primary',
                    timeMin=range_start.isoformat(),
                    timeMax=range_end.isoformat(),
                    singleEvents=True,
                    orderBy='startTime',
                    pageToken=page_token,
                ).execute()
                events.extend(events_result.get('items', []))
                page_token = events_result.get('nextPageToken')
                if not page_token:
                    break
        except HttpError as error:
            self.logger.error(f"Calendar API error: {error}")
            raise DataUnavailable("google calendar", str(error)) from error

        meetings = []
        for event in events:
            start = event['start'].get('dateTime')
            end = event['end'].get('dateTime')
            if not start or not end or event.get('transparency') == 'transparent':
                continue
            meetings.append(Commitment(
                start=parse_timestamp(start, self.tz),
                end=parse_timestamp(end, self.tz),
                source="meeting",
                title=event.get('summary', 'No Title'),
            ))

        self.logger.info(f"Fetched {len(meetings)} Google Calendar meetings for user {user_id}")
        return sorted(meetings, key=lambda m: m.start)
