"""
Tests for the product catalogue and operator detection.
"""
import httpx
import pytest

from ppob_payments.core.catalogue import (
    ProductCatalogue,
    detect_operator,
    normalize_phone,
    product_fields,
)
from ppob_payments.database.store import ProductRepository
from ppob_payments.integrations.digiflazz_client import DigiflazzClient, DigiflazzError

from .conftest import FakeGateway, sample_products


class TestOperatorDetection:
    """Test suite for Indonesian mobile prefix lookup."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "phone,operator",
        [
            ("081234567890", "Telkomsel"),
            ("082212345678", "Telkomsel"),
            ("081712345678", "XL Axiata"),
            ("087812345678", "XL Axiata"),
            ("085712345678", "Unknown"),
            ("085212345678", "Indosat Ooredoo"),
            ("081512345678", "Indosat Ooredoo"),
            ("088112345678", "Smartfren"),
            ("088912345678", "Smartfren"),
            ("089612345678", "Tri Indonesia"),
            ("+62 812-3456-7890", "Telkomsel"),
            ("6289912345678", "Tri Indonesia"),
            ("", "Unknown"),
        ],
    )
    def test_detect_operator(self, phone: str, operator: str) -> None:
        assert detect_operator(phone) == operator

    @pytest.mark.unit
    def test_normalize_phone(self) -> None:
        assert normalize_phone("+62 812-3456-7890") == "081234567890"
        assert normalize_phone("0812 3456 7890") == "081234567890"


class TestProductFields:
    """Test suite for mapping price-list entries to rows."""

    @pytest.mark.unit
    def test_maps_known_fields(self) -> None:
        fields = product_fields(sample_products()[0])

        assert fields["buyer_sku_code"] == "PLN10"
        assert fields["price"] == 10250
        assert fields["buyer_product_status"] is True
        assert fields["start_cut_off"] == "23:45"

    @pytest.mark.unit
    def test_string_flags_and_missing_values(self) -> None:
        fields = product_fields(
            {"buyer_sku_code": "X1", "buyer_product_status": "false", "price": "1500"}
        )

        assert fields["product_name"] == "X1"
        assert fields["buyer_product_status"] is False
        assert fields["seller_product_status"] is True
        assert fields["price"] == 1500
        assert fields["desc"] is None

    @pytest.mark.unit
    def test_entry_without_sku_is_skipped(self) -> None:
        assert product_fields({"product_name": "no sku"}) is None


class TestProductCatalogue:
    """Test suite for price-list sync and lookups."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sync_upserts_and_is_repeatable(
        self,
        digiflazz_client: DigiflazzClient,
        product_repository: ProductRepository,
        gateway: FakeGateway,
    ) -> None:
        items = sample_products() + [{"product_name": "broken"}]
        gateway.price_list = lambda payload: httpx.Response(200, json={"data": items})
        catalogue = ProductCatalogue(digiflazz_client, product_repository)

        assert await catalogue.sync_products() == 3

        items[0] = {**items[0], "price": 11000}
        assert await catalogue.sync_products() == 3

        product = await catalogue.get_enabled_product("PLN10")
        assert product is not None
        assert product.price == 11000

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_disabled_products_hidden(
        self,
        digiflazz_client: DigiflazzClient,
        product_repository: ProductRepository,
        seeded_products: int,
    ) -> None:
        catalogue = ProductCatalogue(digiflazz_client, product_repository)

        assert await catalogue.get_enabled_product("TSEL5") is None
        assert await catalogue.get_enabled_product("NOPE") is None

        enabled = {p.buyer_sku_code for p in await catalogue.list_products()}
        everything = {p.buyer_sku_code for p in await catalogue.list_products(enabled_only=False)}
        pulsa = [p.buyer_sku_code for p in await catalogue.list_products(category="Pulsa")]

        assert enabled == {"PLN10", "xld10"}
        assert everything == {"PLN10", "xld10", "TSEL5"}
        assert pulsa == ["xld10"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sync_failure_propagates(
        self,
        digiflazz_client: DigiflazzClient,
        product_repository: ProductRepository,
        gateway: FakeGateway,
    ) -> None:
        gateway.price_list = lambda payload: httpx.Response(500, json={})
        catalogue = ProductCatalogue(digiflazz_client, product_repository)

        with pytest.raises(DigiflazzError):
            await catalogue.sync_products()
