from fastapi import APIRouter, Depends

from marketplace.core.money import format_minor
from marketplace.core.pagination import page
from marketplace.deps import get_current_user, page_params
from marketplace.models.user import User
from marketplace.services import pricing as pricing_service
from marketplace.services import products as product_service

router = APIRouter()


@router.get("")
async def marketplace_list(
    category: str | None = None,
    search: str | None = None,
    paging: tuple[int, int] = Depends(page_params),
    user: User = Depends(get_current_user),
):
    """Active products with seller prices (base + markup) and available stock."""
    limit, offset = paging
    items, total = await product_service.list_products(
        category=category, search=search, active_only=True, limit=limit, offset=offset
    )
    config = await pricing_service.get_active_config()
    out = []
    for product in items:
        data = product_service.product_to_dict(product, await product_service.stock_for(product))
        if product.variants:
            price = pricing_service.compute_price(product.variants[0].price_minor, config)
            data["price"] = format_minor(price["total_minor"])
        out.append(data)
    return page(out, total, limit, offset)
