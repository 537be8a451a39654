from fastapi import APIRouter
from genorder.api.v1.orders import routes as orders
from genorder.api.v1.patients import routes as patients
from genorder.api.v1.autofill import routes as autofill

api_router = APIRouter()
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(patients.router, prefix="/patients", tags=["patients"])
api_router.include_router(autofill.router, prefix="/autofill", tags=["autofill"])
