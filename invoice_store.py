# invoice_store.py
from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from datetime import date
from typing import Optional

from models import (
    Invoice,
    add_item,
    default_invoice,
    remove_item,
    set_field,
    set_item_field,
)

logger = logging.getLogger(__name__)


class InvoiceEditor:
    """
    Owns the invoice being edited in one session.

    All writes go through the methods below; each one swaps in a new snapshot
    under the lock, so readers always see a complete Invoice with a matching total.
    """

    def __init__(self, today: Optional[date] = None, currency: str = "PKR"):
        # Captured once. reset() brings back exactly this snapshot.
        self._initial = default_invoice(today, currency=currency)
        self._invoice = self._initial
        self._lock = threading.Lock()
        self.export_lock = threading.Lock()

    @property
    def invoice(self) -> Invoice:
        return self._invoice

    @property
    def initial(self) -> Invoice:
        return self._initial

    def _apply(self, fn, *args) -> Invoice:
        with self._lock:
            self._invoice = fn(self._invoice, *args)
            return self._invoice

    def set_field(self, path, value) -> Invoice:
        return self._apply(set_field, path, value)

    def set_item_field(self, index: int, field_name: str, value) -> Invoice:
        return self._apply(set_item_field, index, field_name, value)

    def add_item(self) -> Invoice:
        return self._apply(add_item)

    def remove_item(self, index: int) -> Invoice:
        return self._apply(remove_item, index)

    def apply_form(self, fields, item_rows=()) -> Invoice:
        """
        Apply a whole form submission as one snapshot swap.

        `fields` is a list of (path, value); `item_rows` a list of
        {"name"|"type"|"amount": value} dicts by row index, None meaning "not sent".
        If any value is rejected the current invoice is left untouched.
        """
        with self._lock:
            inv = self._invoice
            for path, value in fields:
                inv = set_field(inv, path, value)
            for index, row in enumerate(item_rows):
                for field_name, value in row.items():
                    if value is not None:
                        inv = set_item_field(inv, index, field_name, value)
            self._invoice = inv
            return inv

    def reset(self) -> Invoice:
        with self._lock:
            self._invoice = self._initial
            return self._invoice

    @property
    def export_in_progress(self) -> bool:
        return self.export_lock.locked()


class InvoiceStore:
    """
    In-memory editors keyed by session id. Nothing is written to disk.

    Holds at most `max_sessions` editors; the least recently used one is
    dropped to make room for a new session.
    """

    def __init__(self, currency: str = "PKR", max_sessions: int = 500):
        self._currency = currency
        self._max_sessions = max(1, int(max_sessions))
        self._editors: OrderedDict[str, InvoiceEditor] = OrderedDict()
        self._lock = threading.Lock()

    def new_session_id(self) -> str:
        return uuid.uuid4().hex

    def get(self, session_id: str) -> InvoiceEditor:
        with self._lock:
            editor = self._editors.get(session_id)
            if editor is not None:
                self._editors.move_to_end(session_id)
                return editor

            while len(self._editors) >= self._max_sessions:
                old_id, _ = self._editors.popitem(last=False)
                logger.info("Dropped idle invoice session %s", old_id[:8])

            editor = InvoiceEditor(currency=self._currency)
            self._editors[session_id] = editor
            logger.info("Started invoice session %s", session_id[:8])
            return editor

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._editors

    def __len__(self) -> int:
        return len(self._editors)
