from fastapi.security import HTTPBearer

# HTTP Bearer authentication scheme of the dashboard users
bearer_user = HTTPBearer(scheme_name="User HTTPBearer")
