import logging

from conftest import raw_discount
from shop.main import report


async def test_report_logs_summary_and_top_discounts(seed, service, caplog):
    seed(
        raw_discount(id="a", code="AAA", currentUsage=2, views=4, totalSavings="20", totalOrderValue="90"),
        raw_discount(id="b", code="BBB", type="free_shipping", value=0, status="inactive"),
    )
    caplog.set_level(logging.INFO, logger="shop.main")

    await report(service)

    text = caplog.text
    assert "Discounts: 2 total, 1 active, 0 scheduled, 0 expired, 1 inactive" in text
    assert "Redemptions: 2, savings: $20.00" in text
    assert "10% off with AAA: used 2" in text
    assert "conversion 50.00%" in text
    assert "Top: AAA (percentage): 2 uses, $20.00 saved" in text


async def test_report_lists_low_conversion_discounts(seed, service, caplog):
    seed(raw_discount(id="a", code="AAA", currentUsage=1, views=40))
    caplog.set_level(logging.INFO, logger="shop.main")

    await report(service)

    assert "Low conversion: AAA: 40 views, 1 uses (2.50%)" in caplog.text
