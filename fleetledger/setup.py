import argparse
from http import HTTPStatus
from requests import post
from datetime import date

from fleetledger.src import argon2
from fleetledger.src.enums import UserRole, ShareRole
from fleetledger.src.minio import createBucket, deleteBucket
from fleetledger.src.constants import INVOICE_FILES
from fleetledger.src.urls import (
    URL_USER_TOKEN,
    URL_USER_ACCOUNT,
    URL_BUS,
    URL_ROUTE,
    URL_EXPENSE,
    URL_BUDGET,
    URL_BUDGET_ITEM,
    URL_PROFIT_SHARING_GROUP,
    URL_PROFIT_SHARING_MEMBER,
)
from fleetledger.src.db import (
    User,
    ExpenseCategory,
    sessionMaker,
    engine,
    ORMbase,
)


# ----------------------------------- Project Setup -------------------------------------------#
def removeTables():
    session = sessionMaker()
    ORMbase.metadata.drop_all(engine)
    session.commit()
    print("* All tables deleted")
    deleteBucket(INVOICE_FILES)
    print("* All buckets deleted")
    session.close()


def createTables():
    session = sessionMaker()
    ORMbase.metadata.create_all(engine)
    session.commit()
    print("* All tables created")
    createBucket(INVOICE_FILES)
    print("* All buckets created")
    session.close()


def initDB():
    session = sessionMaker()
    admin = User(
        full_name="FleetLedger admin",
        national_id="0000-ADMIN",
        email_id="admin@fleetledger.com",
        password=argon2.makePassword("password"),
        role=UserRole.ADMIN,
    )
    session.add(admin)
    session.flush()

    categories = [
        ExpenseCategory(name="Insurance", description="Policies and renewals"),
        ExpenseCategory(name="Maintenance", description="Workshop and spare parts"),
        ExpenseCategory(name="Taxes", description="Road taxes and permits"),
        ExpenseCategory(name="Salaries", description="Driver and helper wages"),
    ]
    session.add_all(categories)
    session.flush()

    session.commit()
    print("* Initialization completed")
    session.close()


def POST(URL: str, header: dict = {}, status_code: int = HTTPStatus.CREATED, **kwargs):
    response = post(URL, headers=header, **kwargs)
    if response.status_code != status_code:
        assert response.status_code == status_code
    else:
        return response


def testDB():
    # Base URL
    BASE_URL = "http://127.0.0.1:8080/dashboard"

    # Create admin token
    credentials = {"national_id": "0000-ADMIN", "password": "password"}
    response = POST(
        (BASE_URL + URL_USER_TOKEN),
        data=credentials,
        status_code=HTTPStatus.CREATED,
    )
    print("* Created token for admin")
    accessToken = {"Authorization": f"Bearer {response.json()['access_token']}"}

    # Create Bus
    busData = {
        "internal_code": "BUS-01",
        "plate_number": "ABC-123",
        "description": "Test bus",
        "monthly_target": 5000000,
    }
    bus = POST(
        (BASE_URL + URL_BUS),
        header=accessToken,
        data=busData,
        status_code=HTTPStatus.CREATED,
    )
    print("* Created bus")

    # Create Worker account
    workerData = {
        "full_name": "Test worker",
        "national_id": "1000-WORKER",
        "password": "password",
        "role": UserRole.WORKER,
        "assigned_bus_id": bus.json()["id"],
    }
    worker = POST(
        (BASE_URL + URL_USER_ACCOUNT),
        header=accessToken,
        data=workerData,
        status_code=HTTPStatus.CREATED,
    )
    print("* Created worker account")

    # Create Route
    routeData = {
        "bus_id": bus.json()["id"],
        "worker_id": worker.json()["id"],
        "name": "Terminal -> Downtown",
        "route_date": date.today().isoformat(),
        "total_income": 850000,
        "expenses": [
            {"name": "fuel", "amount": 180000},
            {"name": "tolls", "amount": 20000},
        ],
    }
    POST(
        (BASE_URL + URL_ROUTE),
        header=accessToken,
        json=routeData,
        status_code=HTTPStatus.CREATED,
    )
    print("* Created route")

    # Create administrative expense
    expenseData = {
        "bus_id": bus.json()["id"],
        "category_id": 1,
        "amount": 120000,
        "description": "Monthly insurance",
    }
    POST(
        (BASE_URL + URL_EXPENSE),
        header=accessToken,
        data=expenseData,
        status_code=HTTPStatus.CREATED,
    )
    print("* Created expense")

    # Create Budget
    budgetData = {
        "bus_id": bus.json()["id"],
        "name": "Test budget",
        "start_date": date.today().replace(day=1).isoformat(),
        "total_planned_expense": 1000000,
    }
    budget = POST(
        (BASE_URL + URL_BUDGET),
        header=accessToken,
        data=budgetData,
        status_code=HTTPStatus.CREATED,
    )
    budgetItemData = {
        "budget_id": budget.json()["id"],
        "category_id": 2,
        "planned_amount": 400000,
    }
    POST(
        (BASE_URL + URL_BUDGET_ITEM),
        header=accessToken,
        data=budgetItemData,
        status_code=HTTPStatus.CREATED,
    )
    print("* Created budget")

    # Create Profit sharing group
    groupData = {
        "bus_id": bus.json()["id"],
        "name": "Test group",
        "start_date": date.today().replace(day=1).isoformat(),
    }
    group = POST(
        (BASE_URL + URL_PROFIT_SHARING_GROUP),
        header=accessToken,
        data=groupData,
        status_code=HTTPStatus.CREATED,
    )
    ownerData = {
        "group_id": group.json()["id"],
        "user_id": 1,
        "role_in_share": ShareRole.OWNER,
        "percentage": 70,
    }
    driverData = {
        "group_id": group.json()["id"],
        "user_id": worker.json()["id"],
        "role_in_share": ShareRole.DRIVER,
        "percentage": 30,
    }
    POST(
        (BASE_URL + URL_PROFIT_SHARING_MEMBER),
        header=accessToken,
        data=ownerData,
        status_code=HTTPStatus.CREATED,
    )
    POST(
        (BASE_URL + URL_PROFIT_SHARING_MEMBER),
        header=accessToken,
        data=driverData,
        status_code=HTTPStatus.CREATED,
    )
    print("* Created profit sharing group")


# Setup database
if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    # remove tables
    parser.add_argument("-rm", action="store_true", help="remove tables")
    parser.add_argument("-cr", action="store_true", help="create tables")
    parser.add_argument("-init", action="store_true", help="initialize DB")
    parser.add_argument("-test", action="store_true", help="add test data")
    args = parser.parse_args()

    if args.cr:
        createTables()
    if args.init:
        initDB()
    if args.test:
        testDB()
    if args.rm:
        removeTables()
