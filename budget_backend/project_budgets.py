from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Connection, Engine

from budget_backend import repository
from budget_backend.balance_engine import MANUAL_ADJUSTMENT, round_money
from budget_backend.balance_service import snapshot_for
from budget_backend.errors import AllocationRejected, InvalidBudgetInput, ProjectBudgetNotFound
from budget_backend.schema import budget_contributions, project_budgets

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

ACTIVE = "ACTIVE"
COMPLETED = "COMPLETED"
PAUSED = "PAUSED"
PROJECT_STATUSES = {ACTIVE, COMPLETED, PAUSED}


@dataclass(frozen=True)
class BudgetContribution:
    amount: Decimal
    created_at: datetime
    description: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class ProjectBudget:
    name: str
    target_amount: Decimal
    current_amount: Decimal = ZERO
    status: str = ACTIVE
    description: Optional[str] = None
    target_date: Optional[date] = None
    contributions: Tuple[BudgetContribution, ...] = ()
    id: Optional[int] = None


@dataclass(frozen=True)
class ProjectBudgetStats:
    total_budgets: int
    active_budgets: int
    completed_budgets: int
    paused_budgets: int
    total_target_amount: Decimal
    total_current_amount: Decimal
    total_contributions: int
    completion_rate: Decimal


def apply_contribution(project: ProjectBudget, amount: Decimal) -> tuple[Decimal, str]:
    """Return the amount and status a project has after a contribution."""
    new_amount = project.current_amount + amount
    status = COMPLETED if new_amount >= project.target_amount else project.status
    return new_amount, status


def summarize_project_budgets(projects: Iterable[ProjectBudget]) -> ProjectBudgetStats:
    projects = list(projects)
    total_target = sum((project.target_amount for project in projects), ZERO)
    total_current = sum((project.current_amount for project in projects), ZERO)
    completion_rate = ZERO
    if total_target > ZERO:
        completion_rate = round_money(total_current / total_target * 100)
    return ProjectBudgetStats(
        total_budgets=len(projects),
        active_budgets=sum(1 for project in projects if project.status == ACTIVE),
        completed_budgets=sum(1 for project in projects if project.status == COMPLETED),
        paused_budgets=sum(1 for project in projects if project.status == PAUSED),
        total_target_amount=total_target,
        total_current_amount=total_current,
        total_contributions=sum(len(project.contributions) for project in projects),
        completion_rate=completion_rate,
    )


class ProjectBudgetService:
    def __init__(self, engine: Engine, clock: Callable[[], datetime]) -> None:
        self.engine = engine
        self.clock = clock

    def list_projects(self, user_id: int) -> List[ProjectBudget]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(project_budgets)
                .where(project_budgets.c.user_id == user_id)
                .order_by(project_budgets.c.created_at.desc(), project_budgets.c.id.desc())
            ).mappings().all()
            return [_project_from_row(row, _fetch_contributions(conn, row["id"])) for row in rows]

    def get_project(self, user_id: int, project_id: int) -> ProjectBudget:
        with self.engine.begin() as conn:
            return _fetch_project(conn, user_id, project_id)

    def create_project(
        self,
        user_id: int,
        name: str,
        target_amount: Decimal,
        description: str | None = None,
        target_date: date | None = None,
    ) -> ProjectBudget:
        name = name.strip()
        if not name:
            raise InvalidBudgetInput("Project name required.")
        if target_amount <= ZERO:
            raise InvalidBudgetInput("Target amount must be greater than zero.")
        with self.engine.begin() as conn:
            repository.fetch_user_settings(conn, user_id)
            project_id = conn.execute(
                insert(project_budgets)
                .values(
                    user_id=user_id,
                    name=name,
                    description=description,
                    target_amount=target_amount,
                    current_amount=ZERO,
                    target_date=target_date,
                    status=ACTIVE,
                    created_at=self.clock(),
                )
                .returning(project_budgets.c.id)
            ).scalar_one()
            project = _fetch_project(conn, user_id, project_id)
        logger.info("Project budget %s created for user %s", project_id, user_id)
        return project

    def update_project(
        self, user_id: int, project_id: int, values: Mapping[str, Any]
    ) -> ProjectBudget:
        values = dict(values)
        if "status" in values and values["status"] not in PROJECT_STATUSES:
            raise InvalidBudgetInput("Invalid project status.")
        with self.engine.begin() as conn:
            _fetch_project(conn, user_id, project_id)
            if values:
                conn.execute(
                    update(project_budgets)
                    .where(project_budgets.c.id == project_id)
                    .values(**values)
                )
            return _fetch_project(conn, user_id, project_id)

    def complete(self, user_id: int, project_id: int) -> ProjectBudget:
        return self.update_project(user_id, project_id, {"status": COMPLETED})

    def pause(self, user_id: int, project_id: int) -> ProjectBudget:
        return self.update_project(user_id, project_id, {"status": PAUSED})

    def resume(self, user_id: int, project_id: int) -> ProjectBudget:
        return self.update_project(user_id, project_id, {"status": ACTIVE})

    def remove_project(self, user_id: int, project_id: int) -> None:
        with self.engine.begin() as conn:
            _fetch_project(conn, user_id, project_id)
            conn.execute(
                delete(budget_contributions).where(
                    budget_contributions.c.project_budget_id == project_id
                )
            )
            conn.execute(delete(project_budgets).where(project_budgets.c.id == project_id))
        logger.info("Project budget %s deleted for user %s", project_id, user_id)

    def add_contribution(
        self,
        user_id: int,
        project_id: int,
        amount: Decimal,
        description: str | None = None,
    ) -> ProjectBudget:
        if amount <= ZERO:
            raise InvalidBudgetInput("Contribution must be greater than zero.")
        with self.engine.begin() as conn:
            project = _fetch_project(conn, user_id, project_id)
            _insert_contribution(conn, user_id, project_id, amount, description, self.clock())
            new_amount, status = apply_contribution(project, amount)
            conn.execute(
                update(project_budgets)
                .where(project_budgets.c.id == project_id)
                .values(current_amount=new_amount, status=status)
            )
            return _fetch_project(conn, user_id, project_id)

    def allocate_monthly_amount(
        self,
        user_id: int,
        project_id: int,
        amount: Decimal,
        description: str | None = None,
    ) -> ProjectBudget:
        """Move ``amount`` from the user's balance into a project.

        The balance check, the negative adjustment, the contribution and the
        project increment share one transaction.
        """
        if amount <= ZERO:
            raise InvalidBudgetInput("Allocation must be greater than zero.")
        now = self.clock()
        with self.engine.begin() as conn:
            project = _fetch_project(conn, user_id, project_id)
            current_balance = snapshot_for(conn, user_id, now.date()).current_balance
            remaining = current_balance - amount
            if remaining < ZERO:
                raise AllocationRejected(
                    f"Allocation rejected: current balance is {current_balance}, "
                    f"allocating {amount} would leave {remaining}."
                )
            repository.insert_balance_adjustment(
                conn,
                user_id,
                -amount,
                description or f"Monthly allocation for {project.name}",
                MANUAL_ADJUSTMENT,
                now,
            )
            _insert_contribution(
                conn,
                user_id,
                project_id,
                amount,
                description or "Monthly allocation",
                now,
            )
            conn.execute(
                update(project_budgets)
                .where(project_budgets.c.id == project_id)
                .values(current_amount=project_budgets.c.current_amount + amount)
            )
            updated = _fetch_project(conn, user_id, project_id)
        logger.info(
            "Allocated %s to project budget %s for user %s", amount, project_id, user_id
        )
        return updated

    def get_stats(self, user_id: int) -> ProjectBudgetStats:
        return summarize_project_budgets(self.list_projects(user_id))


def _fetch_project(conn: Connection, user_id: int, project_id: int) -> ProjectBudget:
    row = conn.execute(
        select(project_budgets).where(
            project_budgets.c.id == project_id,
            project_budgets.c.user_id == user_id,
        )
    ).mappings().first()
    if not row:
        raise ProjectBudgetNotFound("Project budget not found.")
    return _project_from_row(row, _fetch_contributions(conn, project_id))


def _fetch_contributions(conn: Connection, project_id: int) -> Tuple[BudgetContribution, ...]:
    rows = conn.execute(
        select(budget_contributions)
        .where(budget_contributions.c.project_budget_id == project_id)
        .order_by(budget_contributions.c.created_at.desc(), budget_contributions.c.id.desc())
    ).mappings().all()
    return tuple(
        BudgetContribution(
            id=row["id"],
            amount=_coerce_amount(row["amount"]),
            description=row["description"],
            created_at=row["created_at"],
        )
        for row in rows
    )


def _insert_contribution(
    conn: Connection,
    user_id: int,
    project_id: int,
    amount: Decimal,
    description: str | None,
    created_at: datetime,
) -> None:
    conn.execute(
        insert(budget_contributions).values(
            project_budget_id=project_id,
            user_id=user_id,
            amount=amount,
            description=description,
            created_at=created_at,
        )
    )


def _project_from_row(
    row: Mapping[str, Any], contributions: Tuple[BudgetContribution, ...]
) -> ProjectBudget:
    return ProjectBudget(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        target_amount=_coerce_amount(row["target_amount"]),
        current_amount=_coerce_amount(row["current_amount"]),
        target_date=row["target_date"],
        status=row["status"],
        contributions=contributions,
    )


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
