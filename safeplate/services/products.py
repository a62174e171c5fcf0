"""Product lookups and stored safety assessments."""

from __future__ import annotations

import logging
from typing import Any

from ..backend.response import BackendResponse, handle_response
from ..models import Product, ProductSafetyAssessment
from .base import TableService

logger = logging.getLogger(__name__)


class ProductService(TableService):
    table_name = "products"

    async def find_by_barcode(self, barcode: str) -> BackendResponse:
        """Active product with this barcode; data is None when there is none."""
        response = await (
            self._client.table(self.table_name)
            .select("*")
            .eq("barcode", barcode)
            .eq("is_active", True)
            .maybe_single()
            .execute()
        )
        if response.ok and response.data:
            response.data = Product.from_dict(response.data)
        return response

    async def search_products(self, query: str, limit: int = 20) -> BackendResponse:
        response = await (
            self._client.table(self.table_name)
            .select("*")
            .or_(f"name.ilike.%{query}%,brand.ilike.%{query}%")
            .eq("is_active", True)
            .order("verification_count", ascending=False)
            .limit(limit)
            .execute()
        )
        if response.ok:
            response.data = [Product.from_dict(row) for row in response.data or []]
        return response

    async def create_or_update(self, values: dict[str, Any]) -> BackendResponse:
        """Upsert a product by barcode."""
        barcode = values.get("barcode")
        if not barcode:
            return handle_response(error={"message": "Product barcode is required"})
        existing = await self.find_by_barcode(barcode)
        if existing.error:
            return existing
        if existing.data:
            return await self.update(existing.data.id, values)
        return await self.create(values)

    async def get_latest_assessment(
        self,
        product_id: str,
        user_id: str | None = None,
        family_member_id: str | None = None,
    ) -> BackendResponse:
        """Most recent safety assessment of a product for a user or family member."""
        query = (
            self._client.table("product_safety_assessments")
            .select("*")
            .eq("product_id", product_id)
        )
        if user_id:
            query = query.eq("user_id", user_id)
        if family_member_id:
            query = query.eq("family_member_id", family_member_id)
        response = await (
            query.order("assessment_date", ascending=False).limit(1).maybe_single().execute()
        )
        if response.ok and response.data:
            response.data = ProductSafetyAssessment.from_dict(response.data)
        return response
