"""
FastAPI routers grouped by domain (wines, pin).

Each module exposes an APIRouter included by the app module. Endpoints stay
thin and delegate to the services package.
"""
