# src/invokta_session/resources.py

from typing import Any, Mapping, Optional

from .api import ApiClient

# --- Billing API endpoints ---
BUSINESS_ALL = "/api/business/all"
BUSINESS_UPDATE = "/api/business/update"
SELF_BUSINESS_ALL = "/api/vendor/business/all"
CLIENT_BUSINESS_ALL = "/api/client/business/all"
CLIENT_BUSINESS_ADD = "/api/client/business/add"
BANK_ALL = "/api/bank/all"
BANK_ADD = "/api/bank/add"
ITEMS = "/api/items"
INVOICES = "/api/invoices"
INVOICE_SEARCH = "/api/invoices/search"
USER_PROFILE_UPDATE = "/api/users/profile/update"


class BillingResources:
    """
    Business data calls. Everything goes through the shared ApiClient, so
    bearer credentials and renewal are handled there and never here.
    """

    def __init__(self, api: ApiClient):
        self.api = api

    # --- Businesses ---

    async def list_businesses(self, page: int = 0, size: int = 10) -> Any:
        return await self.api.get(BUSINESS_ALL, params={"page": page, "size": size})

    async def get_business(self, business_id: Any) -> Any:
        return await self.api.get(f"/api/business/{business_id}")

    async def update_business(self, fields: Mapping[str, Any]) -> Any:
        return await self.api.post(BUSINESS_UPDATE, json=dict(fields))

    async def list_self_businesses(self, page: int = 0, size: int = 10) -> Any:
        return await self.api.get(SELF_BUSINESS_ALL, params={"page": page, "size": size})

    # --- Clients ---

    async def list_clients(self, page: int = 0, size: int = 10) -> Any:
        return await self.api.get(CLIENT_BUSINESS_ALL, params={"page": page, "size": size})

    async def add_client(self, fields: Mapping[str, Any]) -> Any:
        return await self.api.post(CLIENT_BUSINESS_ADD, json=dict(fields))

    async def delete_client(self, business_id: Any) -> Any:
        return await self.api.delete(f"/api/client/business/delete/{business_id}")

    # --- Bank accounts ---

    async def list_bank_accounts(self) -> Any:
        return await self.api.get(BANK_ALL)

    async def add_bank_account(self, fields: Mapping[str, Any]) -> Any:
        return await self.api.post(BANK_ADD, json=dict(fields))

    async def delete_bank_account(self, account_id: Any) -> Any:
        return await self.api.delete(f"/api/bank/{account_id}")

    # --- Items ---

    async def list_items(self, business_id: Any) -> Any:
        return await self.api.get(ITEMS, params={"businessId": business_id})

    async def delete_item(self, item_id: Any) -> Any:
        return await self.api.delete(f"{ITEMS}/{item_id}")

    # --- Invoices ---

    async def list_invoices(self, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.api.get(INVOICES, params=params)

    async def get_invoice(self, invoice_id: Any) -> Any:
        return await self.api.get(f"{INVOICES}/{invoice_id}")

    async def create_invoice(self, invoice: Mapping[str, Any]) -> Any:
        return await self.api.post(INVOICES, json=dict(invoice))

    async def update_invoice(self, invoice_id: Any, invoice: Mapping[str, Any]) -> Any:
        return await self.api.put(f"{INVOICES}/{invoice_id}", json=dict(invoice))

    async def delete_invoice(self, invoice_id: Any) -> Any:
        return await self.api.delete(f"{INVOICES}/{invoice_id}")

    async def search_invoices(self, **criteria: Any) -> Any:
        return await self.api.get(INVOICE_SEARCH, params=criteria)

    # --- Profile ---

    async def update_profile(self, fields: Mapping[str, Any]) -> Any:
        return await self.api.post(USER_PROFILE_UPDATE, json=dict(fields))
