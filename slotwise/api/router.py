from fastapi import APIRouter

from slotwise.api.routes import auth, public, bookings, availability

api_router = APIRouter()

# 🔓 Public routes
api_router.include_router(auth.router)
api_router.include_router(public.router)

# 🔒 Provider routes (bearer token per endpoint)
api_router.include_router(bookings.router)
api_router.include_router(availability.router)
