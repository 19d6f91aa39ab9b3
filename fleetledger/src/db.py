from secrets import token_hex
from sqlalchemy import (
    JSON,
    TEXT,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, relationship
from sqlalchemy.dialects.postgresql import JSONB

from fleetledger.src.constants import (
    PSQL_DB_DRIVER,
    PSQL_DB_HOST,
    PSQL_DB_PASSWORD,
    PSQL_DB_NAME,
    PSQL_DB_PORT,
    PSQL_DB_USERNAME,
)
from fleetledger.src.enums import UserRole, ShareRole


# Global DBMS variables
dbURL = f"{PSQL_DB_DRIVER}://{PSQL_DB_USERNAME}:{PSQL_DB_PASSWORD}@{PSQL_DB_HOST}:{PSQL_DB_PORT}/{PSQL_DB_NAME}"
engine = create_engine(url=dbURL, echo=False)
sessionMaker = sessionmaker(bind=engine, expire_on_commit=False)
ORMbase = declarative_base()

# Money and percentage column types
Money = Numeric(14, 2)
Percentage = Numeric(5, 2)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


# ----------------------------------- Account DB Models ---------------------------------------#
class User(ORMbase):
    """
    Represents a person who signs in to the dashboard, either an administrator
    or a worker (driver) attached to a single bus.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the user.

        full_name (String(64)):
            Full name of the user, used for display and in profit distributions.
            Must be non-null.

        national_id (String(32)):
            National identification number. Used as the login identifier.
            Must be unique and non-null.

        email_id (TEXT):
            Optional email address. Unique when present.

        password (TEXT):
            Argon2 hash of the password. Plaintext is never stored here.

        role (Integer):
            Role of the user, mapped from the `UserRole` enum.
            Decides which module actions the user may perform.
            Defaults to `UserRole.WORKER`.

        assigned_bus_id (Integer):
            Foreign key referencing the bus a worker operates.
            Every query made by a WORKER is scoped to this bus.
            Set to null if the bus is removed.

        is_active (Boolean):
            Soft deletion flag. Inactive users cannot sign in.

        updated_on (DateTime):
            Timestamp automatically updated whenever the record is modified.

        created_on (DateTime):
            Timestamp of when the account was created.
    """

    __tablename__ = "user_account"

    id = Column(Integer, primary_key=True)
    full_name = Column(String(64), nullable=False)
    national_id = Column(String(32), nullable=False, unique=True)
    email_id = Column(TEXT, unique=True)
    password = Column(TEXT, nullable=False)
    role = Column(Integer, nullable=False, default=UserRole.WORKER)
    assigned_bus_id = Column(
        Integer, ForeignKey("bus.id", ondelete="SET NULL"), index=True
    )
    is_active = Column(Boolean, nullable=False, default=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class UserToken(ORMbase):
    """
    Represents an authentication token issued to a user after a successful login.

    Columns:
        id (Integer):
            Primary key. Unique identifier for this token record.

        user_id (Integer):
            Foreign key referencing `user_account.id`.
            Cascades on delete.

        access_token (String(64)):
            Unique, securely generated 64-character hexadecimal access token.

        expires_in (Integer):
            Token validity in seconds.

        expires_at (DateTime):
            Date and time after which the token becomes invalid.

        client_details (TEXT):
            Optional description of the client (user agent, app version, IP address).

        updated_on (DateTime):
            Timestamp automatically updated whenever the token record is modified.

        created_on (DateTime):
            Timestamp indicating when this token was created.
    """

    __tablename__ = "user_token"

    id = Column(Integer, primary_key=True)
    user_id = Column(
        Integer,
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    access_token = Column(
        String(64), unique=True, nullable=False, default=lambda: token_hex(32)
    )
    expires_in = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    client_details = Column(TEXT)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Fleet DB Models -----------------------------------------#
class Bus(ORMbase):
    """
    Represents a bus of the fleet.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the bus.

        internal_code (String(16)):
            Short code the business uses to refer to the bus.
            Must be unique and non-null.

        plate_number (String(16)):
            Vehicle registration plate. Unique when present.

        description (TEXT):
            Optional free text description.

        monthly_target (Numeric(14, 2)):
            Expected net profit for a calendar month.
            Used to compute the target progress of the monthly statistics.
            Defaults to 0, which disables the progress computation.

        is_active (Boolean):
            Soft deletion flag.

        updated_on (DateTime):
            Timestamp automatically updated whenever the record is modified.

        created_on (DateTime):
            Timestamp indicating when the bus record was created.
    """

    __tablename__ = "bus"

    id = Column(Integer, primary_key=True)
    internal_code = Column(String(16), nullable=False, unique=True, index=True)
    plate_number = Column(String(16), unique=True)
    description = Column(TEXT)
    monthly_target = Column(Money, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Route(ORMbase):
    """
    Represents one day of operation of a bus, driven by a worker.

    Income is entered as a single figure while expenses are itemized in
    `route_expense`. The totals are stored on the route so monthly
    aggregation does not need to visit the expense lines.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the route.

        bus_id (Integer):
            Foreign key referencing the bus that operated the route.
            Deletion of the bus cascades to its routes.

        worker_id (Integer):
            Foreign key referencing the user who drove the route.

        name (String(256)):
            Optional label of the route, ex:- Terminal -> Centro -> Norte

        route_date (Date):
            Day of operation. Used for the monthly aggregation.

        start_time, end_time (DateTime):
            Optional start and end of the operation.

        total_income (Numeric(14, 2)):
            Income collected during the route.

        total_expenses (Numeric(14, 2)):
            Sum of the amounts of the route expense lines.

        net_income (Numeric(14, 2)):
            `total_income - total_expenses`.

        notes (TEXT):
            Optional remarks.

        is_locked (Boolean):
            When true the route is read-only. Only an ADMIN can toggle it.

        updated_on (DateTime):
            Timestamp automatically updated whenever the record is modified.

        created_on (DateTime):
            Timestamp indicating when the route was recorded.
    """

    __tablename__ = "route"

    id = Column(Integer, primary_key=True)
    bus_id = Column(
        Integer,
        ForeignKey("bus.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    worker_id = Column(
        Integer,
        ForeignKey("user_account.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = Column(String(256))
    route_date = Column(Date, nullable=False, index=True)
    start_time = Column(DateTime(timezone=True))
    end_time = Column(DateTime(timezone=True))
    total_income = Column(Money, nullable=False, default=0)
    total_expenses = Column(Money, nullable=False, default=0)
    net_income = Column(Money, nullable=False, default=0)
    notes = Column(TEXT)
    is_locked = Column(Boolean, nullable=False, default=False)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())

    expenses = relationship(
        "RouteExpense",
        cascade="all, delete-orphan",
        order_by="RouteExpense.id",
        lazy="selectin",
    )


class RouteExpense(ORMbase):
    """
    Represents a named expense line of a route (fuel, tolls, meals).

    Columns:
        id (Integer):
            Primary key.

        route_id (Integer):
            Foreign key referencing the route. Cascades on delete.

        name (String(128)):
            Upper-case name of the expense.

        amount (Numeric(14, 2)):
            Non-negative amount of the expense.
    """

    __tablename__ = "route_expense"

    id = Column(Integer, primary_key=True)
    route_id = Column(
        Integer,
        ForeignKey("route.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(128), nullable=False)
    amount = Column(Money, nullable=False)
    # Metadata
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Expense DB Models ---------------------------------------#
class ExpenseCategory(ORMbase):
    """
    Classification of administrative expenses (insurance, maintenance, taxes).
    Budget items are planned per category.
    """

    __tablename__ = "expense_category"

    id = Column(Integer, primary_key=True)
    name = Column(String(64), nullable=False, unique=True)
    description = Column(TEXT)
    is_active = Column(Boolean, nullable=False, default=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Invoice(ORMbase):
    """
    Represents an uploaded supplier invoice.

    The file itself is stored in the `invoice-files` MinIO bucket under the
    invoice id, this table only keeps its metadata.

    Columns:
        id (Integer):
            Primary key. Also the object key of the file in MinIO.

        invoice_number (String(64)):
            Number printed on the invoice.

        provider_name (String(128)):
            Name of the supplier.

        issue_date (Date):
            Date the invoice was issued.

        total_amount (Numeric(14, 2)):
            Total amount of the invoice.

        file_name, file_type, file_size:
            Original name, MIME type and size in bytes of the uploaded file.

        uploaded_by (Integer):
            Foreign key referencing the user who uploaded the invoice.
    """

    __tablename__ = "invoice"

    id = Column(Integer, primary_key=True)
    invoice_number = Column(String(64), nullable=False, index=True)
    provider_name = Column(String(128), nullable=False, index=True)
    issue_date = Column(Date, nullable=False)
    total_amount = Column(Money, nullable=False)
    file_name = Column(TEXT, nullable=False)
    file_type = Column(String(128), nullable=False)
    file_size = Column(Integer, nullable=False)
    uploaded_by = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Expense(ORMbase):
    """
    Represents an administrative expense of a bus, outside of any route
    (insurance, maintenance, taxes). Subtracted from the operational profit
    to obtain the net profit.

    Columns:
        id (Integer):
            Primary key.

        bus_id (Integer):
            Foreign key referencing the bus. Cascades on delete.

        category_id (Integer):
            Foreign key referencing the expense category.

        invoice_id (Integer):
            Optional foreign key referencing the supporting invoice.

        amount (Numeric(14, 2)):
            Amount of the expense.

        expense_date (Date):
            Day the expense was incurred.

        description (TEXT):
            Optional free text.

        created_by (Integer):
            Foreign key referencing the user who recorded the expense.
    """

    __tablename__ = "expense"

    id = Column(Integer, primary_key=True)
    bus_id = Column(
        Integer,
        ForeignKey("bus.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id = Column(
        Integer,
        ForeignKey("expense_category.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    invoice_id = Column(Integer, ForeignKey("invoice.id", ondelete="SET NULL"))
    amount = Column(Money, nullable=False)
    expense_date = Column(Date, nullable=False, index=True)
    description = Column(TEXT)
    created_by = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Budget DB Models ----------------------------------------#
class Budget(ORMbase):
    """
    Represents a spending plan over a period, optionally for a single bus.

    Columns:
        id (Integer):
            Primary key.

        bus_id (Integer):
            Optional foreign key referencing the bus. Null for a fleet wide budget.

        name (String(128)):
            Label of the budget.

        start_date (Date):
            First day of the budget period. Must be non-null.

        end_date (Date):
            Last day of the budget period. Null means open-ended.

        total_planned_income, total_planned_expense (Numeric(14, 2)):
            Headline figures of the plan. Default to 0.

        created_by (Integer):
            Foreign key referencing the user who created the budget.
    """

    __tablename__ = "budget"

    id = Column(Integer, primary_key=True)
    bus_id = Column(Integer, ForeignKey("bus.id", ondelete="CASCADE"), index=True)
    name = Column(String(128), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)
    total_planned_income = Column(Money, nullable=False, default=0)
    total_planned_expense = Column(Money, nullable=False, default=0)
    created_by = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class BudgetItem(ORMbase):
    """
    Planned amount of a budget for one expense category.

    `committed_amount` and `executed_amount` are maintained by the
    administrators and read by the budget execution report.
    A category appears at most once per budget.
    """

    __tablename__ = "budget_item"
    __table_args__ = (UniqueConstraint("budget_id", "category_id"),)

    id = Column(Integer, primary_key=True)
    budget_id = Column(
        Integer,
        ForeignKey("budget.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id = Column(
        Integer,
        ForeignKey("expense_category.id", ondelete="RESTRICT"),
        nullable=False,
    )
    planned_amount = Column(Money, nullable=False, default=0)
    committed_amount = Column(Money, nullable=False, default=0)
    executed_amount = Column(Money, nullable=False, default=0)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())

    category = relationship("ExpenseCategory", lazy="joined")


# ----------------------------------- Profit sharing DB Models --------------------------------#
class ProfitSharingGroup(ORMbase):
    """
    Represents the set of people entitled to a share of the net profit of a
    bus over a period.

    Columns:
        id (Integer):
            Primary key.

        bus_id (Integer):
            Foreign key referencing the bus whose profit is shared.
            Cascades on delete.

        name (String(128)):
            Label of the group.

        start_date (Date):
            First day of the period. Must be non-null.

        end_date (Date):
            Last day of the period. Null means open-ended.

        is_active (Boolean):
            Only one active group may cover a given day of a bus.

        created_by (Integer):
            Foreign key referencing the user who created the group.
    """

    __tablename__ = "profit_sharing_group"

    id = Column(Integer, primary_key=True)
    bus_id = Column(
        Integer,
        ForeignKey("bus.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(128), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey("user_account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())

    bus = relationship("Bus", lazy="joined")


class ProfitSharingMember(ORMbase):
    """
    Represents the share of a user in a profit sharing group.

    Columns:
        id (Integer):
            Primary key.

        group_id (Integer):
            Foreign key referencing the group. Cascades on delete.

        user_id (Integer):
            Foreign key referencing the user receiving the share.
            A user appears at most once per group.

        role_in_share (Integer):
            Mapped from the `ShareRole` enum (OWNER, DRIVER, PARTNER).

        percentage (Numeric(5, 2)):
            Share of the net profit, in the range (0, 100].
            The sum over a group is expected to stay within 100 but it is
            not enforced, an over allocation surfaces as a negative
            unassigned percentage in the distribution.

        is_active (Boolean):
            Inactive members are left out of the distribution.
    """

    __tablename__ = "profit_sharing_member"
    __table_args__ = (UniqueConstraint("group_id", "user_id"),)

    id = Column(Integer, primary_key=True)
    group_id = Column(
        Integer,
        ForeignKey("profit_sharing_group.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Integer,
        ForeignKey("user_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role_in_share = Column(Integer, nullable=False, default=ShareRole.PARTNER)
    percentage = Column(Percentage, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


# ----------------------------------- Audit DB Models -----------------------------------------#
class AuditLog(ORMbase):
    """
    Immutable record of a mutating action. Rows are only ever inserted.

    Columns:
        id (Integer):
            Primary key.

        actor_id (Integer):
            Foreign key referencing the user who performed the action.

        action (String(64)):
            Verb of the action, ex:- POST, PATCH, DELETE.

        entity_type (String(64)):
            Table name of the affected entity.

        entity_id (Integer):
            Primary key of the affected entity, when known.

        description (TEXT):
            Human readable summary, ex:- the request path.

        details (JSON):
            Snapshot of the affected entity after the action.

        created_on (DateTime):
            Timestamp of the action.
    """

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True)
    actor_id = Column(
        Integer, ForeignKey("user_account.id", ondelete="SET NULL"), index=True
    )
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(64), nullable=False, index=True)
    entity_id = Column(Integer, index=True)
    description = Column(TEXT)
    details = Column(JSONDocument)
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())
