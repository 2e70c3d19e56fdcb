from TableModels import Base


async def ensure_ledger_schema(async_engine) -> None:
    """
    Idempotent: safe to run on every startup.
    Creates purchase_lots, consumptions and allocations (and their indexes) if missing.
    """
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
