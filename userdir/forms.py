from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping, Optional

from userdir.config import dlog
from userdir.directory import DirectoryClient
from userdir.errors import ConflictError, DirectoryError, ValidationError
from userdir.models import ROLE_USER, ROLES, Account, blank_to_none, utc_now_iso
from userdir.passwords import MIN_PASSWORD_LENGTH, hash_password


# Inline errors are hidden again client-side after this many seconds.
ERROR_DISPLAY_SECONDS = 5


class FormState(str, Enum):
    CLOSED = "closed"
    ADD_OPEN = "add_open"
    EDIT_OPEN = "edit_open"
    LOADED = "loaded"
    SUBMITTING = "submitting"


class RowAction(str, Enum):
    EDIT = "edit"
    DELETE = "delete"


@dataclass(frozen=True)
class RowCommand:
    kind: RowAction
    id: str

    @classmethod
    def parse(cls, kind: str, account_id: str) -> "RowCommand":
        try:
            action = RowAction((kind or "").strip().lower())
        except ValueError as e:
            raise ValidationError(f"Unknown row action: {kind!r}") from e
        if not account_id:
            raise ValidationError("Row action is missing an account id")
        return cls(kind=action, id=account_id)


@dataclass
class AccountFields:
    account: str = ""
    display_name: str = ""
    password: str = ""
    phone: str = ""
    address: str = ""
    role: str = ROLE_USER

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "AccountFields":
        def text(key: str) -> str:
            value = data.get(key)
            return "" if value is None else str(value)

        return cls(
            account=text("account").strip(),
            display_name=text("display_name").strip(),
            password=text("password"),
            phone=text("phone").strip(),
            address=text("address").strip(),
            role=text("role").strip() or ROLE_USER,
        )

    @classmethod
    def from_account(cls, account: Account) -> "AccountFields":
        # the password is never loaded back into the form
        return cls(
            account=account.account,
            display_name=account.display_name,
            password="",
            phone=account.phone or "",
            address=account.address or "",
            role=account.role or ROLE_USER,
        )


@dataclass
class AccountFormWorkflow:
    """Add/edit modal for the account list.

    Closed -> AddOpen -> Submitting -> Closed
    Closed -> EditOpen(id) -> Loaded -> Submitting -> Closed

    A failed submit goes back to the open state with ``error`` set.
    ``on_saved`` is called after a successful save or delete so the list can
    be reloaded with the active search query.
    """

    directory: DirectoryClient
    on_saved: Optional[Callable[[], None]] = None
    state: FormState = FormState.CLOSED
    editing_id: Optional[str] = None
    fields: AccountFields = field(default_factory=AccountFields)
    error: Optional[str] = None
    _open_state: FormState = FormState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state != FormState.CLOSED

    @property
    def is_edit(self) -> bool:
        return self.editing_id is not None

    @property
    def password_required(self) -> bool:
        return not self.is_edit

    def open_add(self) -> None:
        self.editing_id = None
        self.fields = AccountFields(role=ROLE_USER)
        self.error = None
        self._enter(FormState.ADD_OPEN)

    def open_edit(self, account_id: str) -> bool:
        self.editing_id = account_id
        self.fields = AccountFields()
        self.error = None
        self._enter(FormState.EDIT_OPEN)
        try:
            account = self.directory.get(account_id)
        except DirectoryError as e:
            dlog("form_load_error", {"id": account_id, "error": e.message})
            self.error = f"Failed to load account data: {e.message}"
            return False
        self.fields = AccountFields.from_account(account)
        self._enter(FormState.LOADED)
        return True

    def close(self) -> None:
        self.state = FormState.CLOSED
        self._open_state = FormState.CLOSED
        self.editing_id = None
        self.fields = AccountFields()
        self.error = None

    def validate(self, fields: AccountFields) -> None:
        if not fields.account or not fields.display_name:
            raise ValidationError("Please fill in all required fields")
        if fields.role not in ROLES:
            raise ValidationError(f"Unknown role: {fields.role}", field="role")
        if not self.is_edit and len(fields.password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"A password of at least {MIN_PASSWORD_LENGTH} characters is required for new accounts",
                field="password",
            )

    def submit(self, fields: AccountFields) -> Optional[Account]:
        if self.state == FormState.SUBMITTING:
            self.error = "A save is already in progress"
            return None
        if self.state == FormState.EDIT_OPEN:
            self.error = "Account data is not loaded yet"
            return None
        if self.state != FormState.ADD_OPEN and self.state != FormState.LOADED:
            self.error = "The form is not open"
            return None

        self.fields = fields
        self.error = None
        self.state = FormState.SUBMITTING
        try:
            self.validate(fields)
            saved = self._persist(fields)
        except DirectoryError as e:
            dlog("form_submit_error", {"id": self.editing_id, "error": e.message})
            self.error = e.message
            self.state = self._open_state
            return None

        self.close()
        if self.on_saved:
            self.on_saved()
        return saved

    def dispatch(self, command: RowCommand) -> bool:
        """Run a row action. Returns False when it failed and ``error`` is set."""
        if command.kind == RowAction.EDIT:
            return self.open_edit(command.id)
        return self.delete(command.id)

    def delete(self, account_id: str) -> bool:
        try:
            self.directory.delete(account_id)
        except DirectoryError as e:
            dlog("form_delete_error", {"id": account_id, "error": e.message})
            self.error = f"Delete failed: {e.message}"
            return False
        self.error = None
        if self.on_saved:
            self.on_saved()
        return True

    def _persist(self, fields: AccountFields) -> Account:
        if self.is_edit:
            if self.directory.account_in_use(fields.account, exclude_id=self.editing_id):
                raise ConflictError("This account is already used by another user")
            patch = {
                "account": fields.account,
                "display_name": fields.display_name,
                "phone": blank_to_none(fields.phone),
                "address": blank_to_none(fields.address),
                "role": fields.role,
                "updated_at": utc_now_iso(),
            }
            # A password shorter than the minimum leaves the stored one untouched.
            if len(fields.password) >= MIN_PASSWORD_LENGTH:
                patch["password_hash"] = hash_password(fields.password)
            return self.directory.update(self.editing_id, patch)

        if self.directory.account_in_use(fields.account):
            raise ConflictError("This account is already in use")
        return self.directory.insert({
            "account": fields.account,
            "display_name": fields.display_name,
            "password_hash": hash_password(fields.password),
            "phone": blank_to_none(fields.phone),
            "address": blank_to_none(fields.address),
            "role": fields.role,
        })

    def _enter(self, state: FormState) -> None:
        self.state = state
        self._open_state = state
