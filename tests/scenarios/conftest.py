"""
Fixtures ו-helpers לבדיקות תרחיש מקצה לקצה.

מספק:
- שירות השלמת משלוח (מעבר ל-delivered + זיכוי ארנק)
- פונקציות אימות DB (סטטוס משלוח, היסטוריית מעקב, ארנק)
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_market.db.models.delivery import Delivery, TrackingEntry
from delivery_market.db.models.wallet import Wallet, WalletTransaction
from delivery_market.domain.services.completion_service import DeliveryCompletionService


@pytest.fixture
def completion_service(db_session: AsyncSession, feed) -> DeliveryCompletionService:
    return DeliveryCompletionService(db_session, feed)


# ============================================================================
# פונקציות אימות DB
# ============================================================================

async def assert_delivery_status(
    db_session: AsyncSession,
    delivery_id: str,
    expected_status,
) -> Delivery:
    """אימות סטטוס משלוח - שליפה טרייה מ-DB, מחזיר את המשלוח"""
    result = await db_session.execute(
        select(Delivery).where(Delivery.id == delivery_id).execution_options(
            populate_existing=True
        )
    )
    delivery = result.scalar_one()
    assert delivery.status == expected_status, (
        f"צפי: {expected_status}, בפועל: {delivery.status}"
    )
    return delivery


async def assert_tracking_statuses(
    db_session: AsyncSession,
    delivery_id: str,
    expected: list,
) -> None:
    """אימות רצף הסטטוסים בהיסטוריית המעקב, לפי סדר הכתיבה"""
    result = await db_session.execute(
        select(TrackingEntry.status)
        .where(TrackingEntry.delivery_id == delivery_id)
        .order_by(TrackingEntry.sequence)
    )
    statuses = list(result.scalars().all())
    assert statuses == list(expected), f"צפי: {expected}, בפועל: {statuses}"


async def assert_wallet_balance(
    db_session: AsyncSession,
    user_id: str,
    expected_balance: int,
) -> Wallet:
    """אימות יתרת ארנק - שליפה טרייה מ-DB"""
    result = await db_session.execute(
        select(Wallet).where(Wallet.user_id == user_id).execution_options(
            populate_existing=True
        )
    )
    wallet = result.scalar_one()
    assert wallet.balance == expected_balance, (
        f"צפי: {expected_balance}, בפועל: {wallet.balance}"
    )
    return wallet


async def assert_transaction_count(
    db_session: AsyncSession,
    user_id: str,
    expected_count: int,
) -> None:
    """אימות מספר התנועות ביומן הארנק"""
    result = await db_session.execute(
        select(func.count(WalletTransaction.id)).where(
            WalletTransaction.user_id == user_id
        )
    )
    count = result.scalar()
    assert count == expected_count, (
        f"צפי: {expected_count} תנועות, נמצאו {count}"
    )
