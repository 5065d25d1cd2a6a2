from pydantic import BaseModel, Field


class CachedVariantDTO(BaseModel):
    id: str
    name: str
    stock_level: str = "0"
    price_with_tax: int | None = None
    currency_code: str | None = None
    last_updated: int | None = None  # epoch ms of the last stock write for this variant


class CachedProductDTO(BaseModel):
    product_id: str
    product_name: str
    slug: str
    description: str | None = None
    variants: list[CachedVariantDTO] = []
    last_updated: int  # epoch ms
    variant_data_last_updated: int | None = None  # epoch ms, None until stock is merged in


class CacheStatsDTO(BaseModel):
    hits: int = 0
    misses: int = 0
    variant_hits: int = 0
    variant_misses: int = 0
    errors: int = 0
    last_error: str | None = None
    last_error_time: int | None = None


class ProductCacheEnvelopeDTO(BaseModel):
    """Durable record of the product/variant cache."""
    version: str
    last_cache_update: int  # epoch ms
    products: dict[str, CachedProductDTO] = {}
    stats: CacheStatsDTO = Field(default_factory=CacheStatsDTO)


class StockChangeDTO(BaseModel):
    variant_id: str
    old_stock: str
    new_stock: str


class PriceChangeDTO(BaseModel):
    variant_id: str
    old_price: int | None = None
    new_price: int | None = None


class VariantChangesDTO(BaseModel):
    stock_changes: list[StockChangeDTO] = []
    price_changes: list[PriceChangeDTO] = []
    new_variants: list[str] = []
    missing_variants: list[str] = []

    @property
    def has_changes(self) -> bool:
        return bool(self.stock_changes or self.price_changes or self.new_variants or self.missing_variants)


class StaticVariantDTO(BaseModel):
    variant_id: str
    size: str
    size_code: str
    color: str
    color_code: str
    sku: str


class StaticProductDTO(BaseModel):
    """Static product descriptor as shipped in the catalog data file."""
    id: str
    name: str
    slug: str
    base_price: int
    currency_code: str = "USD"
    description: str | None = None
    variants: list[StaticVariantDTO] = []


class CatalogVariantDTO(BaseModel):
    id: str
    variant_id: str
    size: str
    size_code: str
    color: str
    color_code: str
    sku: str
    stock_level: str = "0"
    price_with_tax: int
    currency_code: str
    in_stock: bool = False


class CatalogProductDTO(BaseModel):
    """Static descriptor merged with live stock and derived availability."""
    id: str
    name: str
    slug: str
    base_price: int
    currency_code: str
    has_any_stock: bool = False
    in_stock_sizes: list[str] = []
    in_stock_colors: list[str] = []
    variants: list[CatalogVariantDTO] = []


class CatalogStatsDTO(BaseModel):
    last_stock_update: int
    products: dict[str, bool] = {}  # product type -> has any stock
    variant_counts: dict[str, int] = {}
