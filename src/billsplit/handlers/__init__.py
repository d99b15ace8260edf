from billsplit.handlers.basic import basic_router
from billsplit.handlers.bills import bills_router
from billsplit.handlers.claims import claims_router

__all__ = ["basic_router", "bills_router", "claims_router"]
