import base64, json, requests
from requests import Response

from fleetledger.src.constants import (
    OPENOBSERVE_HOST,
    OPENOBSERVE_ORG,
    OPENOBSERVE_PASSWORD,
    OPENOBSERVE_PORT,
    OPENOBSERVE_PROTOCOL,
    OPENOBSERVE_STREAM,
    OPENOBSERVE_USERNAME,
)

# Basic Auth credentials of the ingestion user
credentials = base64.b64encode(
    bytes(OPENOBSERVE_USERNAME + ":" + OPENOBSERVE_PASSWORD, "utf-8")
).decode("utf-8")

headers = {"Content-type": "application/json", "Authorization": "Basic " + credentials}

openobserve_host = f"{OPENOBSERVE_PROTOCOL}://{OPENOBSERVE_HOST}:{OPENOBSERVE_PORT}"
openobserve_url = f"{openobserve_host}/api/{OPENOBSERVE_ORG}/{OPENOBSERVE_STREAM}/_json"

# Seconds to wait for the ingestion API
REQUEST_TIMEOUT = 5


def logEvent(eventData: dict) -> Response:
    """
    Ship one event to the OpenObserve stream of the service.

    Args:
        eventData (dict): The event, ex:-
            {
                "_method": "PATCH",
                "_path": "/dashboard/route",
                "_user_id": 3,
                "_role": "ADMIN",
                "id": 41,
                "is_locked": true
            }

    Returns:
        requests.Response: The HTTP response of the ingestion API.
    """
    return requests.post(
        openobserve_url,
        headers=headers,
        data=json.dumps(eventData, default=str),
        timeout=REQUEST_TIMEOUT,
    )
