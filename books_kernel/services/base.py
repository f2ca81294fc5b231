"""
BaseService -- abstract base for all kernel services.

Every service receives a SQLAlchemy ``Session`` from its caller and persists
through ``session.flush()``, never ``session.commit()``.  The caller
(``session_scope()``, a web request handler, a test) owns commit and
rollback, which is what lets a failed multi-step posting be discarded as a
whole.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide report queries; those belong in selectors/.
    """

    def __init__(self, session: Session):
        self.session = session
