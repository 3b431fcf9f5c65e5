"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is kept as a storage backend because:
1. The owner can inspect key health directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions: increments and lease checkouts are read-then-write
  and therefore best-effort under concurrency
- Limited query capabilities (we filter in Python)

Partial updates write only the cells that changed, in one batch call.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from keypool.config import GoogleSheetsSettings, get_settings
from keypool.models.audit import AuditEvent, AuditEventType, AuditSeverity
from keypool.models.credential import Credential, CredentialStatus, utc_now
from keypool.services.crypto import SecretCipher
from keypool.services.storage.interface import (
    AuditStorageInterface,
    CredentialStorageInterface,
    DuplicateError,
    StorageConnectionError,
    StorageError,
)


# Column mappings for the keys sheet
KEY_COLUMNS = [
    "id",
    "secret_material",
    "label",
    "provider",
    "owner_id",
    "is_global",
    "is_active",
    "status",
    "usage_count",
    "last_used_at",
    "error_count",
    "last_error",
    "reset_at",
    "leased_until",
    "created_at",
    "updated_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

_BOOL_FIELDS = {"is_global", "is_active"}
_INT_FIELDS = {"usage_count", "error_count"}
_DATETIME_FIELDS = {"last_used_at", "reset_at", "leased_until", "created_at", "updated_at"}


class MalformedRowError(StorageError):
    """A sheet row could not be parsed into a record. Retrying will not help."""
    pass


_write_retry = retry(
    retry=retry_if_not_exception_type((DuplicateError, MalformedRowError, ValueError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _cell_value(field: str, value: Any) -> str:
    """Serialise one field for a sheet cell."""
    if value is None:
        return ""
    if field in _BOOL_FIELDS:
        return str(bool(value))
    if field in _DATETIME_FIELDS:
        return value.isoformat()
    if field == "status":
        return CredentialStatus(value).value
    return str(value)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_keys_sheet(self) -> gspread.Worksheet:
        """Get or create the keys worksheet."""
        return self._get_or_create_sheet(self._settings.keys_sheet_name, KEY_COLUMNS, 500)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


class GoogleSheetsCredentialStorage(CredentialStorageInterface):
    """
    Google Sheets implementation of key storage.

    One key per row. secret_material holds the Fernet token.
    """

    def __init__(
        self,
        cipher: SecretCipher,
        client: Optional[GoogleSheetsClient] = None,
    ):
        super().__init__(cipher)
        self._client = client or GoogleSheetsClient()

    def _credential_to_row(self, credential: Credential) -> list:
        data = credential.model_dump()
        return [_cell_value(column, data[column]) for column in KEY_COLUMNS]

    def _row_to_credential(self, row: list) -> Credential:
        """Convert a spreadsheet row to a Credential."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        data: dict[str, Any] = {}
        for index, column in enumerate(KEY_COLUMNS):
            raw = safe_get(index)
            if column in _BOOL_FIELDS:
                data[column] = raw.lower() == "true"
            elif column in _INT_FIELDS:
                data[column] = int(raw or 0)
            elif column in _DATETIME_FIELDS:
                data[column] = datetime.fromisoformat(raw) if raw else None
            else:
                data[column] = raw or None

        # Unset required columns fall back to model defaults
        for column in ("status", "provider", "created_at", "updated_at"):
            if data[column] is None:
                data.pop(column)
        return Credential(**data)

    def _all_rows(self) -> list[tuple[int, list]]:
        """All data rows with their 1-based sheet row number."""
        sheet = self._client.get_keys_sheet()
        values = sheet.get_all_values()
        return [
            (idx, row) for idx, row in enumerate(values[1:], start=2)
            if row and row[0]
        ]

    def _all_credentials(self) -> list[Credential]:
        credentials = []
        for _, row in self._all_rows():
            try:
                credentials.append(self._row_to_credential(row))
            except (ValueError, TypeError):
                continue  # Skip malformed rows
        return credentials

    def _locate(self, credential_id: UUID) -> Optional[tuple[int, Credential]]:
        for idx, row in self._all_rows():
            if row[0] == str(credential_id):
                try:
                    return idx, self._row_to_credential(row)
                except (ValueError, TypeError) as e:
                    raise MalformedRowError(f"Row {idx} for key {credential_id} is malformed: {e}")
        return None

    @_write_retry
    async def save(self, credential: Credential) -> Credential:
        stored = self._encrypted_copy(credential)
        try:
            if self._locate(stored.id) is not None:
                raise DuplicateError(f"Key already exists: {stored.id}")
            sheet = self._client.get_keys_sheet()
            sheet.append_row(self._credential_to_row(stored), value_input_option="RAW")
            return stored
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save key: {e}")

    async def find_by_id(self, credential_id: UUID) -> Optional[Credential]:
        try:
            located = self._locate(credential_id)
            return located[1] if located else None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get key: {e}")

    async def find_owned_active(self, owner_id: str) -> list[Credential]:
        try:
            return [
                c for c in self._all_credentials()
                if c.is_owned_by(owner_id) and c.is_selectable
            ]
        except Exception as e:
            raise StorageError(f"Failed to list keys: {e}")

    async def find_shared_active(self) -> list[Credential]:
        try:
            return [c for c in self._all_credentials() if c.is_shared and c.is_selectable]
        except Exception as e:
            raise StorageError(f"Failed to list keys: {e}")

    async def find_visible(
        self,
        owner_id: str,
        include_shared: bool,
    ) -> list[Credential]:
        try:
            visible = [
                c for c in self._all_credentials()
                if c.is_owned_by(owner_id) or (include_shared and c.is_shared)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list keys: {e}")
        visible.sort(key=lambda c: c.created_at, reverse=True)
        return visible

    async def find_recoverable(self, now: datetime) -> list[Credential]:
        try:
            return [
                c for c in self._all_credentials()
                if c.status in (CredentialStatus.QUOTA_EXCEEDED, CredentialStatus.RATE_LIMITED)
                and c.reset_at is not None
                and c.reset_at <= now
            ]
        except Exception as e:
            raise StorageError(f"Failed to list keys: {e}")

    @_write_retry
    async def update_fields(
        self,
        credential_id: UUID,
        changes: dict[str, Any],
        increments: Optional[dict[str, int]] = None,
    ) -> bool:
        self._check_changes(changes, increments)
        try:
            located = self._locate(credential_id)
            if located is None:
                return False
            row_idx, current = located

            values = dict(changes)
            for field, delta in (increments or {}).items():
                values[field] = getattr(current, field) + delta
            values["updated_at"] = utc_now()

            # Validate the merged record before writing any cell
            Credential.model_validate({**current.model_dump(), **values})

            # One batch write, so a retry never re-applies half an update
            cells = [
                gspread.Cell(row_idx, KEY_COLUMNS.index(field) + 1, _cell_value(field, value))
                for field, value in values.items()
            ]
            self._client.get_keys_sheet().update_cells(cells, value_input_option="RAW")
            return True
        except (StorageError, ValueError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to update key: {e}")

    async def delete(self, credential_id: UUID) -> bool:
        try:
            located = self._locate(credential_id)
            if located is None:
                return False
            self._client.get_keys_sheet().delete_rows(located[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete key: {e}")

    async def try_acquire_lease(
        self,
        credential_id: UUID,
        lease_seconds: int,
        now: Optional[datetime] = None,
    ) -> bool:
        now = now or utc_now()
        try:
            located = self._locate(credential_id)
            if located is None:
                return False
            row_idx, current = located
            if current.leased_until is not None and current.leased_until > now:
                return False
            self._client.get_keys_sheet().update_cell(
                row_idx,
                KEY_COLUMNS.index("leased_until") + 1,
                _cell_value("leased_until", now + timedelta(seconds=lease_seconds)),
            )
            return True
        except Exception as e:
            raise StorageError(f"Failed to lease key: {e}")

    async def release_lease(self, credential_id: UUID) -> None:
        try:
            located = self._locate(credential_id)
            if located is not None:
                self._client.get_keys_sheet().update_cell(
                    located[0], KEY_COLUMNS.index("leased_until") + 1, ""
                )
        except Exception as e:
            raise StorageError(f"Failed to release key lease: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            actor_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _all_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except (ValueError, TypeError):
                    continue
        return events

    @_write_retry
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._all_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._all_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
