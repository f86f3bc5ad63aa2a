import re
import logging
from typing import Dict, List, Optional, Sequence

from google.oauth2 import service_account
from googleapiclient.discovery import build

from .config import RosterColumns, RosterSettings
from .errors import ConfigError, RosterError
from .models import MemberRecord

logger = logging.getLogger(__name__)

SHEET_ID_PATTERNS = [
    re.compile(r'/spreadsheets/d/([a-zA-Z0-9-_]+)'),
    re.compile(r'/d/([a-zA-Z0-9-_]+)'),
    re.compile(r'id=([a-zA-Z0-9-_]+)'),
]
EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

REQUIRED_COLUMNS = ('email', 'department', 'position', 'status')
OPTIONAL_COLUMNS = ('projects', 'campus')


def extract_sheet_id(url: str) -> str:
    if not url:
        raise RosterError("GSHEET_MEMBERS_LINK is required")
    for pattern in SHEET_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    raise RosterError(f"Could not extract sheet ID from URL: {url}")


def normalize_email(value) -> str:
    s = str(value or '').strip().lower()
    return s if '@' in s else ''


def find_column(headers: Sequence, name: str) -> int:
    """Index of the first header containing ``name`` (case-insensitive), or -1."""
    needle = name.lower()
    for i, header in enumerate(headers):
        if header and needle in str(header).lower():
            return i
    return -1


def map_columns(headers: Sequence, columns: RosterColumns) -> Dict[str, int]:
    indices = {field: find_column(headers, getattr(columns, field))
               for field in REQUIRED_COLUMNS + OPTIONAL_COLUMNS}

    missing = [getattr(columns, f) for f in REQUIRED_COLUMNS if indices[f] < 0]
    if missing:
        raise RosterError(f"Missing roster columns: {', '.join(missing)}")
    for field in OPTIONAL_COLUMNS:
        if indices[field] < 0:
            logger.warning(f"  [!] Column '{getattr(columns, field)}' not found; {field} groups will be empty.")
    return indices


def rows_to_members(values: List[List], columns: RosterColumns) -> List[MemberRecord]:
    """Converts raw sheet values (header row first) into member records."""
    if not values or len(values) < 2:
        raise RosterError("No data found in sheet")

    indices = map_columns(values[0], columns)
    logger.debug(f"Column mapping: {indices}")

    def cell(row, field):
        i = indices[field]
        if i < 0 or i >= len(row) or row[i] is None:
            return ''
        return str(row[i]).strip()

    members: Dict[str, MemberRecord] = {}
    for row_number, row in enumerate(values[1:], start=2):
        email = normalize_email(cell(row, 'email'))
        if not email:
            continue
        if not EMAIL_RE.match(email):
            logger.warning(f"  [!] Invalid email format in row {row_number}: {email}")
        if email in members:
            logger.warning(f"  [!] Duplicate email in row {row_number}: {email} (keeping first)")
            continue
        members[email] = MemberRecord(
            email=email,
            department=cell(row, 'department'),
            position=cell(row, 'position'),
            status=cell(row, 'status'),
            projects=cell(row, 'projects'),
            campus=cell(row, 'campus'),
        )
    return list(members.values())


class SheetsRosterSource:
    SCOPES = ['https://www.googleapis.com/auth/spreadsheets.readonly']

    def __init__(self, service, sheet_id: str, settings: RosterSettings):
        self.service = service
        self.sheet_id = sheet_id
        self.settings = settings

    @classmethod
    def from_service_account_file(cls, service_account_file: str, sheet_link: str,
                                  settings: RosterSettings, subject_email: Optional[str] = None):
        try:
            creds = service_account.Credentials.from_service_account_file(
                service_account_file, scopes=cls.SCOPES
            )
        except (OSError, ValueError) as e:
            raise ConfigError(f"Could not load Google service account {service_account_file}: {e}") from e
        if subject_email:
            creds = creds.with_subject(subject_email)
        service = build('sheets', 'v4', credentials=creds, cache_discovery=False)
        return cls(service, extract_sheet_id(sheet_link), settings)

    def _sheet_title(self) -> str:
        spreadsheet = self.service.spreadsheets().get(spreadsheetId=self.sheet_id).execute()
        titles = [s.get('properties', {}).get('title', '') for s in spreadsheet.get('sheets', [])]
        logger.debug(f"Available sheets: {', '.join(titles)}")
        wanted = self.settings.sheet_name.lower()
        for title in titles:
            if title.lower() == wanted:
                return title
        raise RosterError(f"Sheet \"{self.settings.sheet_name}\" not found. Available sheets: {', '.join(titles)}")

    def read_members(self) -> List[MemberRecord]:
        """Reads the roster. Any failure is a RosterError so nothing gets reconciled."""
        logger.info(f"Reading member data from sheet: {self.settings.sheet_name}")
        try:
            title = self._sheet_title()
            result = self.service.spreadsheets().values().get(
                spreadsheetId=self.sheet_id, range=f"{title}!A:Z"
            ).execute()
        except RosterError:
            raise
        except Exception as e:
            logger.error(f"Google Sheets API Error for {self.sheet_id}: {e}")
            raise RosterError(f"Could not read roster: {e}") from e

        members = rows_to_members(result.get('values', []), self.settings.columns)
        logger.info(f"Loaded {len(members)} members from sheet")
        return members
