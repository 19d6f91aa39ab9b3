from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fleetledger.src.db import (
    ORMbase,
    Bus,
    Route,
    RouteExpense,
    Expense,
    ExpenseCategory,
    User,
)
from fleetledger.src.enums import UserRole


@pytest.fixture
def session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    ORMbase.metadata.create_all(engine)
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
        ORMbase.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def bus(session):
    bus = Bus(internal_code="BUS-01", monthly_target=Decimal("1000000"))
    session.add(bus)
    session.commit()
    return bus


@pytest.fixture
def worker(session, bus):
    worker = User(
        full_name="Worker",
        national_id="1000-WORKER",
        password="hash",
        role=UserRole.WORKER,
        assigned_bus_id=bus.id,
    )
    session.add(worker)
    session.commit()
    return worker


@pytest.fixture
def category(session):
    category = ExpenseCategory(name="Insurance")
    session.add(category)
    session.commit()
    return category


def addRoute(session, bus, worker, route_date: date, income, expenses=()) -> Route:
    route = Route(
        bus_id=bus.id,
        worker_id=worker.id,
        route_date=route_date,
        total_income=Decimal(income),
    )
    route.expenses = [
        RouteExpense(name=f"LINE {i}", amount=Decimal(amount))
        for i, amount in enumerate(expenses)
    ]
    route.total_expenses = sum((line.amount for line in route.expenses), Decimal(0))
    route.net_income = route.total_income - route.total_expenses
    session.add(route)
    session.commit()
    return route


def addExpense(session, bus, category, expense_date: date, amount) -> Expense:
    expense = Expense(
        bus_id=bus.id,
        category_id=category.id,
        amount=Decimal(amount),
        expense_date=expense_date,
    )
    session.add(expense)
    session.commit()
    return expense
