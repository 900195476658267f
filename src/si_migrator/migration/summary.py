"""Outcome summary of a migration run."""

import threading
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from loguru import logger
from pydantic import BaseModel, Field
from rich.console import Console
from rich.table import Table
from rich.text import Text


class MigrationStatus(str, Enum):
    """Terminal state of one service instance."""

    COMPLETED = 'completed'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class MigrationResult(BaseModel):
    """Outcome of migrating one service instance."""

    org: str = Field(..., description='Organization name')
    space: str = Field(..., description='Space name')
    name: str = Field(..., description='Service instance name')
    service: str = Field(default='', description='Service label')
    status: MigrationStatus = Field(..., description='Migration status')
    message: str = Field(default='', description='Result message')


ResultKey = Tuple[str, str, str, str]


class Summary:
    """Collects one result per service instance from concurrent tasks.

    The first result recorded for an instance is kept. Later results for
    the same instance are ignored.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._results: Dict[ResultKey, MigrationResult] = {}

    def _record(self, result: MigrationResult) -> None:
        key = (result.org, result.space, result.name, result.service)
        with self._lock:
            if key in self._results:
                logger.debug(f'Result for {"/".join(key)} already recorded, ignoring')
                return
            self._results[key] = result

    def add_successful(self, org: str, space: str, name: str, service: str) -> None:
        self._record(
            MigrationResult(
                org=org,
                space=space,
                name=name,
                service=service,
                status=MigrationStatus.COMPLETED,
                message='successful',
            )
        )

    def add_skipped(
        self,
        org: str,
        space: str,
        name: str,
        service: str,
        reason: Optional[Union[str, Exception]] = None,
    ) -> None:
        if not name:
            return
        message = f'skipped: {reason}' if reason else 'skipped'
        self._record(
            MigrationResult(
                org=org,
                space=space,
                name=name,
                service=service,
                status=MigrationStatus.SKIPPED,
                message=message,
            )
        )

    def add_failed(
        self, org: str, space: str, name: str, service: str, error: Union[str, Exception]
    ) -> None:
        if not name:
            return
        self._record(
            MigrationResult(
                org=org,
                space=space,
                name=name,
                service=service,
                status=MigrationStatus.FAILED,
                message=str(error),
            )
        )

    def _count(self, status: MigrationStatus) -> int:
        with self._lock:
            return sum(1 for r in self._results.values() if r.status == status)

    @property
    def success_count(self) -> int:
        return self._count(MigrationStatus.COMPLETED)

    @property
    def skipped_count(self) -> int:
        return self._count(MigrationStatus.SKIPPED)

    @property
    def failure_count(self) -> int:
        return self._count(MigrationStatus.FAILED)

    def results(self) -> List[MigrationResult]:
        """Return all results ordered by org, space and name."""
        with self._lock:
            results = list(self._results.values())
        return sorted(results, key=lambda r: (r.org, r.space, r.name))

    def display(self, console: Console) -> None:
        """Print the results table and totals."""
        table = Table(title='Migration Results')
        table.add_column('Org', style='cyan')
        table.add_column('Space', style='cyan')
        table.add_column('Name', style='bold')
        table.add_column('Service')
        table.add_column('Result')

        styles = {
            MigrationStatus.COMPLETED: 'green',
            MigrationStatus.SKIPPED: 'yellow',
            MigrationStatus.FAILED: 'red',
        }
        for result in self.results():
            table.add_row(
                result.org,
                result.space,
                result.name,
                result.service,
                Text(result.message, style=styles[result.status]),
            )

        console.print(table)
        console.print(
            f'Migration summary: {self.success_count} successes, '
            f'{self.skipped_count} skipped, {self.failure_count} errors.'
        )
