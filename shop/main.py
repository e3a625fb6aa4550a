import asyncio
import logging

from shop.config import load_config, APP_ENV, IS_PROD
from shop.db.pool import create_pool, check_connection
from shop.discounts import discount_service, set_pg_pool
from shop.discounts.service import DiscountService
from shop.utils.money import format_money
from shop.utils.text import describe_discount

logger = logging.getLogger(__name__)


async def report(service: DiscountService) -> None:
    """Сводка по скидкам магазина в лог (статусы пересчитываются на текущий момент)."""
    listing = await service.list_discounts()
    a = listing.analytics

    logger.info(
        "Discounts: %d total, %d active, %d scheduled, %d expired, %d inactive",
        a.total, a.active, a.scheduled, a.expired, a.inactive,
    )
    logger.info("Redemptions: %d, savings: %s", a.total_usage, format_money(a.total_savings))

    for stats in listing.discounts:
        d = stats.discount
        remaining = "∞" if stats.remaining_uses is None else stats.remaining_uses
        logger.info(
            "[%s] %s: used %d, left %s, customers %d, avg order %s, conversion %s%%",
            d.status.value,
            describe_discount(d),
            stats.usage_count,
            remaining,
            stats.unique_customers,
            format_money(stats.average_order_value),
            stats.conversion_rate,
        )

    for top in a.top_performing:
        logger.info("Top: %s (%s): %d uses, %s saved", top.code, top.kind.value, top.usage, format_money(top.savings))

    for low in a.least_performing:
        logger.info("Low conversion: %s: %d views, %d uses (%s%%)", low.code, low.views, low.usage, low.conversion_rate)


async def main():
    cfg = load_config()
    logging.basicConfig(
        level=cfg.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    discount_service.code_length = cfg.code_length
    discount_service.code_attempts = cfg.code_attempts

    pool = None

    # --- PostgreSQL pool (только в PROD) ---
    if IS_PROD:
        pool = await create_pool(cfg.pg)
        await check_connection(pool)
        set_pg_pool(pool)

        if cfg.ensure_schema:
            from shop.discounts.pg_storage import PgDiscountStorage
            await PgDiscountStorage(pool).ensure_schema()
            logger.info("PG schema ensured")
    else:
        logger.info("APP_ENV=%s → DB отключена, скидки из %s", APP_ENV, cfg.discounts_path)

    try:
        await report(discount_service)
    finally:
        if pool is not None:
            await pool.close()


if __name__ == "__main__":
    asyncio.run(main())
