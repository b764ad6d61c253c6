"""
Policy Provider
===============

Supplies the lending constants (loan period, renewals, limits, fine rate
and cap, pickup window, fine threshold) to the other services.
The policy can be swapped at runtime; readers always get a complete,
validated snapshot.
"""

from typing import Any, Dict, Optional
import logging
import threading

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..database import LibraryPolicyDB
from ..exceptions import InvalidInput
from ..value_objects import LendingPolicy

logger = logging.getLogger(__name__)


class PolicyProvider:
    """Holds the current LendingPolicy and supports hot reload"""

    def __init__(self, policy: Optional[LendingPolicy] = None):
        self._policy = policy or LendingPolicy()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "PolicyProvider":
        """Build from a PolicyConfig settings object"""
        return cls(cls._validate(config.model_dump()))

    def current(self) -> LendingPolicy:
        return self._policy

    def update(self, **overrides: Any) -> LendingPolicy:
        """Replace selected policy values; the whole policy is re-validated"""
        unknown = set(overrides) - set(LendingPolicy.model_fields)
        if unknown:
            raise InvalidInput("policy", f"unknown policy fields: {sorted(unknown)}", sorted(unknown))

        with self._lock:
            merged = {**self._policy.model_dump(), **overrides}
            self._policy = self._validate(merged)

        logger.info(f"Lending policy updated: {overrides}")
        return self._policy

    def load_overrides(self, session: Session) -> LendingPolicy:
        """Apply key/value overrides stored in the library_policies table"""
        overrides: Dict[str, str] = {}
        for row in session.query(LibraryPolicyDB).all():
            if row.policy_name in LendingPolicy.model_fields:
                overrides[row.policy_name] = row.policy_value
            else:
                logger.warning(f"Ignoring unknown policy entry '{row.policy_name}'")

        if not overrides:
            return self._policy
        return self.update(**overrides)

    @staticmethod
    def _validate(values: Dict[str, Any]) -> LendingPolicy:
        try:
            return LendingPolicy(**values)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "policy"
            raise InvalidInput(field, first["msg"], first.get("input")) from e
