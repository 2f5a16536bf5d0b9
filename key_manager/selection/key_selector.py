"""Resolve a selection criterion into concrete keys."""

from fnmatch import fnmatchcase
from typing import Iterable, List

import structlog

from ..client.credential_client import CredentialClient
from ..client.models import CredentialRecord, NotFoundError
from .models import KeyTarget, SelectionCriterion

logger = structlog.get_logger(__name__)


def matches_pattern(name: str, pattern: str) -> bool:
    """Glob match against the whole name.

    ``*`` matches any run, ``?`` one character. Names carry no path
    separators, so ``**`` behaves exactly like ``*``.
    """
    return fnmatchcase(name, pattern)


def filter_records(
    records: Iterable[CredentialRecord], pattern: str
) -> List[CredentialRecord]:
    """Keep records whose name matches the glob, preserving order."""
    return [r for r in records if matches_pattern(r.name, pattern)]


class KeySelector:
    """Turns a SelectionCriterion into an ordered list of KeyTargets."""

    def __init__(self, client: CredentialClient):
        self.client = client
        self.logger = structlog.get_logger(self.__class__.__name__)

    async def select(self, criterion: SelectionCriterion) -> List[KeyTarget]:
        """Resolve the criterion against the full key listing.

        Raises:
            ConfigurationError: Both or neither of hash/pattern set
            NotFoundError: Nothing matched
        """
        criterion.validate_exclusive()

        records = await self.client.list(include_disabled=True)

        if criterion.hash:
            selected = [r for r in records if r.hash == criterion.hash]
            if not selected:
                raise NotFoundError(
                    f"No key found with hash: {criterion.hash}", status_code=None
                )
        else:
            selected = filter_records(records, criterion.pattern or "")
            if not selected:
                raise NotFoundError(
                    f"No keys match pattern: {criterion.pattern}", status_code=None
                )

        self.logger.info(
            "Keys selected",
            criterion=criterion.describe(),
            listed=len(records),
            selected=len(selected),
        )
        return [KeyTarget.from_record(r) for r in selected]
