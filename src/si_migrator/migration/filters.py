"""Org name filtering."""

import re
from typing import List, Optional


class OrgFilter:
    """Include and exclude org names by regular expression.

    Patterns match anywhere in the name. An empty include list accepts
    every org, and an exclude match always wins.
    """

    def __init__(
        self,
        include_orgs: Optional[List[str]] = None,
        exclude_orgs: Optional[List[str]] = None,
    ):
        self.include = [re.compile(p) for p in include_orgs or []]
        self.exclude = [re.compile(p) for p in exclude_orgs or []]

    def excluded(self, org: str) -> bool:
        return any(p.search(org) for p in self.exclude)

    def included(self, org: str) -> bool:
        if not self.include:
            return True
        return any(p.search(org) for p in self.include)

    def allows(self, org: str) -> bool:
        return self.included(org) and not self.excluded(org)
